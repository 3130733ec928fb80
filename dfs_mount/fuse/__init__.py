"""FUSE data path: file nodes, handles, write buffers and the kernel adapter."""
