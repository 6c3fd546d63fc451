"""
Build 展示组装：零件、目录信息、反应统计、所有者视图的修订叠加
"""

from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from hangar.models.build import Build, is_publicly_visible
from hangar.repositories.build_repository import BuildRepository
from hangar.repositories.parts import load_parts
from hangar.schemas.build import BuildPartView, BuildView
from hangar.services.catalog import CatalogClient
from hangar.services.validation import is_build_verified


class BuildPresenter:
    """把 ORM 行批量转换为 BuildView"""

    def __init__(self, db: Session, catalog: CatalogClient, builds: Optional[BuildRepository] = None):
        self.db = db
        self.catalog = catalog
        self.builds = builds or BuildRepository(db)

    def _staged_revisions(self, builds: Sequence[Build]) -> Dict[str, Build]:
        by_owner: Dict[str, List[str]] = {}
        for build in builds:
            if is_publicly_visible(build.status) and build.owner_user_id:
                by_owner.setdefault(build.owner_user_id, []).append(build.id)
        staged: Dict[str, Build] = {}
        for owner_user_id, published_ids in by_owner.items():
            staged.update(self.builds.open_revisions_for(published_ids, owner_user_id))
        return staged

    def present(
        self,
        builds: Sequence[Build],
        viewer_user_id: Optional[str] = None,
        owner_projection: bool = False,
    ) -> List[BuildView]:
        """
        组装展示模型

        owner_projection=True 时（所有者读取自己的 Build），PUBLISHED 行的内容和零件
        优先取未结束的修订草稿，并标出 staged_revision_id / staged_revision_status
        """
        if not builds:
            return []

        staged = self._staged_revisions(builds) if owner_projection else {}
        sources = {b.id: staged.get(b.id, b) for b in builds}

        parts_by_build = load_parts(self.db, [s.id for s in sources.values()])
        item_ids = {
            p.catalog_item_id
            for parts in parts_by_build.values()
            for p in parts
            if p.catalog_item_id
        }
        items = self.catalog.get_items(item_ids) if item_ids else {}
        reactions = self.builds.reactions.summarize([b.id for b in builds], viewer_user_id)

        views = []
        for build in builds:
            source = sources[build.id]
            revision = staged.get(build.id)
            summary = reactions[build.id]
            view = BuildView(
                id=build.id,
                owner_user_id=build.owner_user_id,
                status=build.status,
                revision_of_build_id=build.revision_of_build_id,
                token=build.token,
                expires_at=build.expires_at,
                title=source.title or "",
                description=source.description,
                build_video_url=source.build_video_url,
                flight_video_url=source.flight_video_url,
                source_aircraft_id=source.source_aircraft_id,
                image_asset_id=source.image_asset_id,
                moderation_reason=source.moderation_reason,
                created_at=build.created_at,
                updated_at=source.updated_at,
                published_at=build.published_at,
                parts=[
                    BuildPartView(
                        gear_type=p.gear_type,
                        catalog_item_id=p.catalog_item_id,
                        position=p.position,
                        notes=p.notes,
                        catalog_item=items.get(p.catalog_item_id),
                    )
                    for p in parts_by_build.get(source.id, [])
                ],
                like_count=summary.like_count,
                dislike_count=summary.dislike_count,
                viewer_reaction=summary.viewer_reaction,
                staged_revision_id=revision.id if revision is not None else None,
                staged_revision_status=revision.status if revision is not None else None,
            )
            view.verified = is_build_verified(view)
            views.append(view)
        return views

    def present_one(
        self,
        build: Optional[Build],
        viewer_user_id: Optional[str] = None,
        owner_projection: bool = False,
    ) -> Optional[BuildView]:
        if build is None:
            return None
        return self.present([build], viewer_user_id, owner_projection)[0]
