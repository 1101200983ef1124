"""
Shared fixtures for the Smart Code Retriever test suite.
"""

import os
import sys
import warnings
from pathlib import Path

import pytest

# Filter deprecation warnings from pytest-asyncio; we cannot fix the library.
warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    module="pytest_asyncio",
)

# Ensure the src/ directory is on the import path so that
# coderetriever.core.* can be imported without installing.
SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(SRC_ROOT))

# Dummy keys so validate() / get_api_key() work in functional tests.
# No test performs a real network call.
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key-not-real")
os.environ.setdefault("OPENAI_API_KEY", "test-key-not-real")
os.environ.setdefault("GEMINI_API_KEY", "test-key-not-real")

from coderetriever.core.engine import CodeFragment, EmbeddingProvider, FragmentKind  # noqa: E402


def make_fragment(fragment_id: str, kind: FragmentKind = FragmentKind.METHOD, **kwargs) -> CodeFragment:
    """Fragment with sensible defaults; ``name`` defaults to the last id segment."""
    kwargs.setdefault("name", fragment_id.rsplit(".", 1)[-1])
    kwargs.setdefault("file_path", f"{fragment_id.replace('.', '/')}.py")
    kwargs.setdefault("start_line", 1)
    kwargs.setdefault("end_line", 5)
    return CodeFragment(id=fragment_id, kind=kind, **kwargs)


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic embedding capability for tests.

    ``vectors`` maps a substring to the vector returned for any text
    containing it; other texts get ``default``.
    """

    provider_name = "fake"

    def __init__(self, vectors=None, default=None, available=True, fail=False):
        self.vectors = vectors or {}
        self.default = default if default is not None else [0.0, 0.0, 1.0]
        self.available = available
        self.fail = fail
        self.calls = []

    def is_available(self) -> bool:
        return self.available

    def embed(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service down")
        out = []
        for text in texts:
            for needle, vector in self.vectors.items():
                if needle in text:
                    out.append(list(vector))
                    break
            else:
                out.append(list(self.default))
        return out


# =============================================================================
# Fixtures — fragments
# =============================================================================

@pytest.fixture
def user_repository_fragments():
    """A CLASS documented with "database connection" plus a method inside it."""
    return [
        make_fragment(
            "app.repo.UserRepository",
            kind=FragmentKind.CLASS,
            signature="class UserRepository",
            content="class UserRepository:\n    def connect(self): ...",
            package_name="app.repo",
            documentation="Stores users using a database connection.",
        ),
        make_fragment(
            "app.repo.UserRepository.connect",
            signature="def connect(self)",
            content="def connect(self):\n    return open_pool()",
            package_name="app.repo",
        ),
        make_fragment(
            "app.util.slugify",
            signature="def slugify(text)",
            content="def slugify(text):\n    return text.lower()",
            package_name="app.util",
        ),
    ]


@pytest.fixture
def graph_fragments():
    """
    A small dependency graph whose dependency names equal fragment ids,
    so traversal works without name resolution:

        Alpha -> Beta -> Gamma -> Delta
    """
    return [
        make_fragment("Alpha", kind=FragmentKind.CLASS, signature="class Alpha",
                      documentation="alpha orchestrator", dependencies=["Beta"]),
        make_fragment("Beta", kind=FragmentKind.CLASS, signature="class Beta",
                      dependencies=["Gamma"]),
        make_fragment("Gamma", kind=FragmentKind.CLASS, signature="class Gamma",
                      dependencies=["Delta"]),
        make_fragment("Delta", kind=FragmentKind.CLASS, signature="class Delta"),
    ]


@pytest.fixture
def make():
    """Fragment factory (see :func:`make_fragment`)."""
    return make_fragment


@pytest.fixture
def fake_embeddings():
    """The :class:`FakeEmbeddingProvider` class, for per-test construction."""
    return FakeEmbeddingProvider


# =============================================================================
# Fixtures — source trees
# =============================================================================

@pytest.fixture
def python_source() -> str:
    """Module with an enum, a protocol, a documented class, and a function."""
    return (
        "from enum import Enum\n"
        "from typing import Optional, Protocol\n"
        "\n"
        "\n"
        "class Status(Enum):\n"
        "    ACTIVE = 1\n"
        "    BLOCKED = 2\n"
        "\n"
        "\n"
        "class Store(Protocol):\n"
        "    def get(self, key: str) -> Optional[bytes]: ...\n"
        "\n"
        "\n"
        "class UserRepository(BaseRepository):\n"
        "    \"\"\"Stores users using a database connection.\"\"\"\n"
        "\n"
        "    table: str = \"users\"\n"
        "\n"
        "    @staticmethod\n"
        "    def connect(config: \"DatabaseConfig\") -> Connection:\n"
        "        \"\"\"Open a connection.\"\"\"\n"
        "        return Connection(config)\n"
        "\n"
        "\n"
        "async def fetch_user(user_id: int) -> Optional[User]:\n"
        "    return None\n"
    )


@pytest.fixture
def tmp_project(tmp_path: Path, python_source: str) -> Path:
    """
    Temporary project with a package, a broken file, and an excluded
    directory that must never be scanned.
    """
    pkg = tmp_path / "app"
    pkg.mkdir()
    (pkg / "__init__.py").write_text("", encoding="utf-8")
    (pkg / "models.py").write_text(python_source, encoding="utf-8")
    (pkg / "service.py").write_text(
        "from app.models import UserRepository\n"
        "\n"
        "\n"
        "class UserService:\n"
        "    \"\"\"Business rules for users.\"\"\"\n"
        "\n"
        "    def register(self, repo: UserRepository, email: str) -> bool:\n"
        "        \"\"\"Validate and store a new user.\"\"\"\n"
        "        try:\n"
        "            repo.connect(None)\n"
        "        except ValueError:\n"
        "            raise\n"
        "        return True\n",
        encoding="utf-8",
    )
    (pkg / "broken.py").write_text("def oops(:\n    pass\n", encoding="utf-8")

    excluded = tmp_path / "__pycache__"
    excluded.mkdir()
    (excluded / "cached.py").write_text("def hidden():\n    pass\n", encoding="utf-8")

    return tmp_path
