"""Tracked repositories."""

from typing import List, Optional

from ..models import Repository
from ..schemas.drift import HealingConfig, HealingConfigUpdate
from ..exceptions import RepositoryNotFoundError
from .base import BaseRepository


class RepoRepository(BaseRepository[Repository]):
    model_class = Repository
    not_found_error = RepositoryNotFoundError

    def get_by_full_name(self, full_name: str) -> Optional[Repository]:
        return self.db.query(Repository).filter(Repository.full_name == full_name).first()

    def upsert(self, full_name: str, installation_id: Optional[str] = None,
               default_branch: Optional[str] = None) -> Repository:
        """Create the repository on first sight, refresh installation/branch after."""
        repo = self.get_by_full_name(full_name)
        if repo is None:
            repo = Repository(full_name=full_name, installation_id=installation_id,
                              default_branch=default_branch or "main")
            return self.add(repo)
        if installation_id:
            repo.installation_id = installation_id
        if default_branch:
            repo.default_branch = default_branch
        self.db.flush()
        return repo

    def list_all(self) -> List[Repository]:
        return self.db.query(Repository).order_by(Repository.full_name).all()

    def list_healing_enabled(self) -> List[Repository]:
        return (
            self.db.query(Repository)
            .filter(Repository.healing_enabled.is_(True))
            .order_by(Repository.full_name)
            .all()
        )

    def healing_config(self, repository_id: str) -> HealingConfig:
        return HealingConfig.model_validate(self.get_by_id(repository_id))

    def update_healing_config(self, repository_id: str, update: HealingConfigUpdate) -> HealingConfig:
        repo = self.get_by_id(repository_id)
        for field, value in update.model_dump(exclude_none=True).items():
            setattr(repo, field, value)
        self.db.flush()
        return HealingConfig.model_validate(repo)
