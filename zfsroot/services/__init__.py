"""服务层：资源驱动（ZFS / 容器）、外部协作方、构建编排器"""
