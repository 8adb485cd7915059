"""zfsroot - ZFS 根文件系统构建编排引擎"""

__version__ = "0.3.0"
