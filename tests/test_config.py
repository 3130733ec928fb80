from dfs_mount.fuse.config import DEFAULT_FLUSH_BACKOFF, MountConfig


def test_defaults(monkeypatch):
    for name in ("DFS_MOUNT_STAGING_DIR", "DFS_MOUNT_ATTR_TTL", "DFS_MOUNT_FLUSH_BACKOFF",
                 "DFS_MOUNT_FLUSH_TIMEOUT", "DFS_MOUNT_RETRY_MAX_ATTEMPTS", "DFS_MOUNT_RETRY_TIME_LIMIT"):
        monkeypatch.delenv(name, raising=False)

    config = MountConfig.from_env()

    assert config.flush_backoff == DEFAULT_FLUSH_BACKOFF
    assert config.flush_timeout is None


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("DFS_MOUNT_STAGING_DIR", str(tmp_path))
    monkeypatch.setenv("DFS_MOUNT_ATTR_TTL", "5")
    monkeypatch.setenv("DFS_MOUNT_FLUSH_TIMEOUT", "120")
    monkeypatch.setenv("DFS_MOUNT_RETRY_MAX_ATTEMPTS", "2")

    config = MountConfig.from_env()

    assert config.staging_dir == str(tmp_path)
    assert config.attr_ttl == 5.0
    assert config.flush_timeout == 120.0
    assert config.retry_max_attempts == 2
