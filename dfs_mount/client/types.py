import stat
from dataclasses import dataclass, field, replace
from typing import Optional


@dataclass
class FileInfo:
    """Metadata for a remote path, as returned by an accessor's stat."""
    name: str
    mode: int
    size: int
    mtime: float
    uid: int = 0
    gid: int = 0
    atime: Optional[float] = None

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)


@dataclass
class Attrs:
    """Cached attribute snapshot of a file or directory."""
    name: str
    mode: int
    size: int = 0
    uid: int = 0
    gid: int = 0
    mtime: float = 0.0
    atime: float = 0.0
    ctime: float = 0.0
    expires: float = field(default=0.0, compare=False)

    @classmethod
    def from_info(cls, info: FileInfo, expires: float) -> "Attrs":
        atime = info.atime if info.atime is not None else info.mtime
        return cls(name=info.name, mode=info.mode, size=info.size,
                   uid=info.uid, gid=info.gid, mtime=info.mtime,
                   atime=atime, ctime=info.mtime, expires=expires)

    def copy(self) -> "Attrs":
        return replace(self)

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def to_stat(self, block_size: int = 4096) -> dict:
        """Render the snapshot as the stat dict fusepy expects from getattr."""
        return {
            'st_mode': self.mode,
            'st_size': self.size,
            'st_uid': self.uid,
            'st_gid': self.gid,
            'st_atime': self.atime,
            'st_mtime': self.mtime,
            'st_ctime': self.ctime,
            'st_nlink': 2 if self.is_dir else 1,
            'st_blksize': block_size,
            'st_blocks': (self.size + 511) // 512,
        }
