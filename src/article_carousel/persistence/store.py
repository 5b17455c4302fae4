"""Record store for articles, carousel intents and slide versions."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field

from ..content.models import Article, CarouselIntent, CarouselSlideVersion
from ..exceptions import CarouselNotFoundError, DuplicateIntentError, VersionNotFoundError


class ArticlesIndex(BaseModel):
    """Articles keyed by id."""

    articles: dict[str, Article] = Field(default_factory=dict)


class CarouselsIndex(BaseModel):
    """Intents and their versions, stored together so a cascade is one write."""

    intents: dict[str, CarouselIntent] = Field(default_factory=dict)
    versions: dict[str, CarouselSlideVersion] = Field(default_factory=dict)


class CarouselStore(ABC):
    """Persistence operations the carousel pipeline relies on.

    Returned records are copies; changes only persist through
    ``update_*`` calls.
    """

    @abstractmethod
    async def get_article(self, article_id: str) -> Article | None: ...

    @abstractmethod
    async def save_article(self, article: Article) -> None: ...

    @abstractmethod
    async def get_intent_by_article(self, article_id: str) -> CarouselIntent | None: ...

    @abstractmethod
    async def get_intent(self, intent_id: str) -> CarouselIntent | None: ...

    @abstractmethod
    async def insert_intent(self, intent: CarouselIntent) -> CarouselIntent: ...

    @abstractmethod
    async def update_intent(self, intent: CarouselIntent) -> CarouselIntent: ...

    @abstractmethod
    async def delete_intent(self, intent_id: str) -> bool: ...

    @abstractmethod
    async def list_versions(
        self,
        intent_id: str,
        slide_number: int | None = None,
    ) -> list[CarouselSlideVersion]: ...

    @abstractmethod
    async def get_version(self, version_id: str) -> CarouselSlideVersion | None: ...

    @abstractmethod
    async def insert_version(self, version: CarouselSlideVersion) -> CarouselSlideVersion: ...

    @abstractmethod
    async def update_version(self, version: CarouselSlideVersion) -> CarouselSlideVersion: ...

    @abstractmethod
    async def latest_version_number(self, intent_id: str, slide_number: int) -> int: ...

    @abstractmethod
    async def set_active_version(
        self,
        intent_id: str,
        slide_number: int,
        version_id: str,
    ) -> CarouselSlideVersion: ...


class MemoryCarouselStore(CarouselStore):
    """In-memory store. Also the base for file-backed stores.

    Usage:
        store = MemoryCarouselStore()
        await store.save_article(article)
        intent = await store.insert_intent(CarouselIntent(article_id=article.id, page_count=5))
    """

    def __init__(self):
        self._articles = ArticlesIndex()
        self._carousels = CarouselsIndex()
        self._lock = asyncio.Lock()

    # Hooks for subclasses that persist

    def _ensure_loaded(self) -> None:
        pass

    def _commit_articles(self) -> None:
        pass

    def _commit_carousels(self) -> None:
        pass

    # ==================== Articles ====================

    async def get_article(self, article_id: str) -> Article | None:
        async with self._lock:
            self._ensure_loaded()
            article = self._articles.articles.get(article_id)
            return article.model_copy(deep=True) if article else None

    async def save_article(self, article: Article) -> None:
        async with self._lock:
            self._ensure_loaded()
            self._articles.articles[article.id] = article.model_copy(deep=True)
            self._commit_articles()

    # ==================== Intents ====================

    async def get_intent_by_article(self, article_id: str) -> CarouselIntent | None:
        async with self._lock:
            self._ensure_loaded()
            for intent in self._carousels.intents.values():
                if intent.article_id == article_id:
                    return intent.model_copy(deep=True)
            return None

    async def get_intent(self, intent_id: str) -> CarouselIntent | None:
        async with self._lock:
            self._ensure_loaded()
            intent = self._carousels.intents.get(intent_id)
            return intent.model_copy(deep=True) if intent else None

    async def insert_intent(self, intent: CarouselIntent) -> CarouselIntent:
        async with self._lock:
            self._ensure_loaded()
            for existing in self._carousels.intents.values():
                if existing.article_id == intent.article_id:
                    raise DuplicateIntentError(f"Carousel already exists for article {intent.article_id}")
            self._carousels.intents[intent.id] = intent.model_copy(deep=True)
            self._commit_carousels()
            return intent

    async def update_intent(self, intent: CarouselIntent) -> CarouselIntent:
        async with self._lock:
            self._ensure_loaded()
            if intent.id not in self._carousels.intents:
                raise CarouselNotFoundError(f"Carousel {intent.id} not found")
            self._carousels.intents[intent.id] = intent.model_copy(deep=True)
            self._commit_carousels()
            return intent

    async def delete_intent(self, intent_id: str) -> bool:
        """Delete an intent and all of its versions."""
        async with self._lock:
            self._ensure_loaded()
            if self._carousels.intents.pop(intent_id, None) is None:
                return False
            self._carousels.versions = {
                vid: v for vid, v in self._carousels.versions.items()
                if v.carousel_intent_id != intent_id
            }
            self._commit_carousels()
            return True

    # ==================== Versions ====================

    def _versions_for(self, intent_id: str, slide_number: int | None = None) -> list[CarouselSlideVersion]:
        return [
            v for v in self._carousels.versions.values()
            if v.carousel_intent_id == intent_id
            and (slide_number is None or v.slide_number == slide_number)
        ]

    async def list_versions(
        self,
        intent_id: str,
        slide_number: int | None = None,
    ) -> list[CarouselSlideVersion]:
        """Versions ordered by slide, newest version first."""
        async with self._lock:
            self._ensure_loaded()
            versions = self._versions_for(intent_id, slide_number)
            versions.sort(key=lambda v: (v.slide_number, -v.version_number))
            return [v.model_copy(deep=True) for v in versions]

    async def get_version(self, version_id: str) -> CarouselSlideVersion | None:
        async with self._lock:
            self._ensure_loaded()
            version = self._carousels.versions.get(version_id)
            return version.model_copy(deep=True) if version else None

    async def insert_version(self, version: CarouselSlideVersion) -> CarouselSlideVersion:
        async with self._lock:
            self._ensure_loaded()
            if version.carousel_intent_id not in self._carousels.intents:
                raise CarouselNotFoundError(f"Carousel {version.carousel_intent_id} not found")
            for existing in self._versions_for(version.carousel_intent_id, version.slide_number):
                if existing.version_number == version.version_number:
                    raise ValueError(
                        f"Version {version.version_number} already exists for slide {version.slide_number}"
                    )
            self._carousels.versions[version.id] = version.model_copy(deep=True)
            self._commit_carousels()
            return version

    async def update_version(self, version: CarouselSlideVersion) -> CarouselSlideVersion:
        async with self._lock:
            self._ensure_loaded()
            if version.id not in self._carousels.versions:
                raise VersionNotFoundError(f"Version {version.id} not found")
            self._carousels.versions[version.id] = version.model_copy(deep=True)
            self._commit_carousels()
            return version

    async def latest_version_number(self, intent_id: str, slide_number: int) -> int:
        """Highest version number for a slide, 0 if it has none."""
        async with self._lock:
            self._ensure_loaded()
            return max((v.version_number for v in self._versions_for(intent_id, slide_number)), default=0)

    async def set_active_version(
        self,
        intent_id: str,
        slide_number: int,
        version_id: str,
    ) -> CarouselSlideVersion:
        """Make one version the only active version of its slide."""
        async with self._lock:
            self._ensure_loaded()
            target = self._carousels.versions.get(version_id)
            if (
                target is None
                or target.carousel_intent_id != intent_id
                or target.slide_number != slide_number
            ):
                raise VersionNotFoundError(f"Version {version_id} not found for slide {slide_number}")

            for version in self._versions_for(intent_id, slide_number):
                version.is_active = version.id == version_id
            self._commit_carousels()
            return target.model_copy(deep=True)


class JsonCarouselStore(MemoryCarouselStore):
    """File-backed store under a data directory.

    Files:
    - articles.json: articles keyed by id
    - carousels.json: intents and versions

    Every write replaces the whole file atomically.
    """

    def __init__(self, data_dir: Path):
        """Initialize the store.

        Args:
            data_dir: Directory holding the JSON files.
        """
        super().__init__()
        self.data_dir = Path(data_dir)
        self.articles_path = self.data_dir / "articles.json"
        self.carousels_path = self.data_dir / "carousels.json"
        self._loaded = False

    def _load_json(self, path: Path, model: type[BaseModel]) -> BaseModel:
        """Load a JSON file into a Pydantic model."""
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return model.model_validate(data)
        return model()

    def _save_json(self, path: Path, model: BaseModel) -> None:
        """Save a Pydantic model to JSON file via a temp file and rename."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.stem}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(model.model_dump(mode="json"), f, indent=2, default=str)
            os.replace(tmp_path, path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._articles = self._load_json(self.articles_path, ArticlesIndex)
        self._carousels = self._load_json(self.carousels_path, CarouselsIndex)
        self._loaded = True

    def _commit_articles(self) -> None:
        self._save_json(self.articles_path, self._articles)

    def _commit_carousels(self) -> None:
        self._save_json(self.carousels_path, self._carousels)
