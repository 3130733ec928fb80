# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved
'''
This example exercises a DFS mount: it writes a file, appends to it and reads
it back through the mountpoint.

Setup:
    # Install the package
    pip install -e .

    # Install FUSE on your system
    # On Ubuntu/Debian:
    sudo apt-get install fuse

    # Mount an export directory in another terminal
    python -m dfs_mount.fuse /srv/export /mnt/dfs

Usage:
    python fuse_operations.py /mnt/dfs

Troubleshooting:
    # Enable debug logging and per-operation tracing
    export DFS_MOUNT_LOG_LEVEL=DEBUG
    python -m dfs_mount.fuse --trace /srv/export /mnt/dfs
'''
import sys
import os

def main():
    if len(sys.argv) != 2:
        print("Usage: python fuse_operations.py <mountpoint>")
        sys.exit(1)

    mountpoint = sys.argv[1]
    example_file = os.path.join(mountpoint, "example.txt")

    # Write to a file; the content is uploaded when the file is closed
    try:
        with open(example_file, 'w') as f:
            f.write("Hello FUSE")
        print(f"File created and written: {example_file}")
    except OSError as e:
        print(f"Write operation failed: {e}")

    # Reopening for append seeds the staging file with the remote content
    try:
        with open(example_file, 'a') as f:
            f.write(", again")
            f.flush()
            os.fsync(f.fileno())
        print(f"File appended and synced: {example_file}")
    except OSError as e:
        print(f"Append operation failed: {e}")

    # Read from the file
    try:
        with open(example_file, 'r') as f:
            content = f.read()
        print(f"Content read from file: {content}")
    except OSError as e:
        print(f"Read operation failed: {e}")

    try:
        os.chmod(example_file, 0o600)
        print(f"Mode changed: {oct(os.stat(example_file).st_mode)}")
    except OSError as e:
        print(f"Chmod operation failed: {e}")

if __name__ == '__main__':
    main()
