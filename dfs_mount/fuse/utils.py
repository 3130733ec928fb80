# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
Utility functions for the DFS FUSE filesystem.

This module provides logging configuration and utility functions
for the DFS FUSE filesystem implementation.
"""

import logging
import time
import os

# Enable a debug trace for all file operations if requested
TRACE_OPERATIONS = os.environ.get('DFS_MOUNT_TRACE_OPS', '').lower() in ('true', '1', 'yes')

# Configure logging
logging.basicConfig(
    level=os.environ.get('DFS_MOUNT_LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s] - %(message)s'
)
logger = logging.getLogger('DFSMount')
logger.setLevel(os.environ.get('DFS_MOUNT_LOG_LEVEL', 'INFO').upper())

def time_function(func_name, start_time):
    """
    Helper function for timing operations.

    Calculates and logs the elapsed time for a function call.

    Args:
        func_name (str): Name of the function being timed
        start_time (float): Start time from time.time()

    Returns:
        float: Elapsed time in seconds
    """
    elapsed = time.time() - start_time
    logger.debug(f"{func_name} completed in {elapsed:.4f} seconds")
    return elapsed

def trace_op(operation, path, **details):
    """
    Trace a file operation for debugging purposes.

    This function logs detailed information about file operations
    when the DFS_MOUNT_TRACE_OPS environment variable is set.

    Args:
        operation (str): The file operation being performed
        path (str): The path of the file being operated on
        **details: Additional details to log
    """
    if TRACE_OPERATIONS:
        detail_str = ', '.join(f"{k}={v}" for k, v in details.items())
        logger.debug(f"TRACE: {operation} on {path} {detail_str}")
