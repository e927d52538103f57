import pytest

from pushpipe.services.build_store import BuildStore
from pushpipe.services.executor import PipelineExecutor
from pushpipe.services.secrets import MemorySecretStore
from pushpipe.services.transport import default_registry

from helpers import FakeCheckout

@pytest.fixture
def source_tree(tmp_path):
    src = tmp_path / "source"
    (src / "dist" / "css").mkdir(parents=True)
    (src / "dist" / "index.html").write_text("<h1>hello</h1>")
    (src / "dist" / "css" / "site.css").write_text("body {}")
    (src / "README.md").write_text("readme")
    return src

@pytest.fixture
def secrets():
    return MemorySecretStore({"repo-token": "s3cret", "deploy-key": "-----BEGIN KEY-----"})

@pytest.fixture
def executor_factory(tmp_path, source_tree, secrets):
    def factory(checkout=None, transports=None, **kwargs):
        return PipelineExecutor(
            secrets=secrets,
            checkout=checkout or FakeCheckout(source_tree),
            transports=transports or default_registry(secrets, timeout=30),
            logs_dir=tmp_path / "logs",
            stage_timeout=30,
            workspace_root=tmp_path,
            **kwargs,
        )
    return factory

@pytest.fixture
def store():
    return BuildStore()
