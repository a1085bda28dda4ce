import pytest

from sourcecache.adapters.filesystem import FileSystem
from sourcecache.internal.config import SourceCacheConfig
from sourcecache.kernel.remote import Remote
from tests.kernel.mocks import RecordingGetter


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's environment out of the tests."""
    for name in (
        "SOURCECACHE_CACHE_HOME",
        "SOURCECACHE_DISABLE_INSECURE_FEATURES",
        "SOURCECACHE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cache_home(tmp_path):
    """A temporary cache home directory (not created up front)."""
    return str(tmp_path / "cache")


@pytest.fixture
def generic_getter():
    return RecordingGetter(files={"file.yaml": "generic", "sub/nested.yaml": "nested"})


@pytest.fixture
def s3_getter():
    return RecordingGetter(files={"object.yaml": "from s3"})


@pytest.fixture
def http_getter():
    return RecordingGetter(files={"values.yaml": "from http"})


@pytest.fixture
def make_remote(cache_home, generic_getter, s3_getter, http_getter):
    """Factory for a Remote wired to recording getters."""
    def _make(fs=None, **kwargs):
        kwargs.setdefault("home", cache_home)
        kwargs.setdefault("config", SourceCacheConfig())
        return Remote(
            getter=generic_getter,
            s3_getter=s3_getter,
            http_getter=http_getter,
            fs=fs or FileSystem(),
            **kwargs,
        )
    return _make


@pytest.fixture
def remote(make_remote):
    return make_remote()
