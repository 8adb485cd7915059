"""统一异常体系

所有业务异常继承 ZfsRootError，替代散落的 ValueError / RuntimeError。
CLI 层据 exit_code 退出，脚本调用方可区分"缺少依赖"与一般失败。
"""

from __future__ import annotations

# 退出码
EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_INVALID_ARGS = 2
EXIT_MISSING_DEPS = 3
EXIT_CONFIG_ERROR = 4
EXIT_TIMEOUT_ERROR = 7


class ZfsRootError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"
    exit_code: int = EXIT_GENERAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ZfsRootError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"
    exit_code = EXIT_CONFIG_ERROR


class ValidationError(ZfsRootError):
    """输入数据校验失败（构建名 / 主机名 / 配置档等），发生在任何变更之前"""

    code = "VALIDATION_ERROR"
    exit_code = EXIT_INVALID_ARGS

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class InvalidStatusError(ValidationError):
    """构建状态不在已知枚举内"""

    code = "INVALID_STATUS"


class DependencyError(ZfsRootError):
    """缺少必需的外部命令"""

    code = "DEPENDENCY_ERROR"
    exit_code = EXIT_MISSING_DEPS

    def __init__(self, command: str, hint: str = "") -> None:
        message = f"缺少必需命令: {command}"
        if hint:
            message += f"（安装提示: {hint}）"
        super().__init__(message)
        self.command = command
        self.hint = hint


class AlreadyExistsError(ZfsRootError):
    """资源已存在，需要显式 cleanup 才能重建"""

    code = "ALREADY_EXISTS"


class NotFoundError(ZfsRootError):
    """数据集 / 快照 / 容器不存在"""

    code = "NOT_FOUND"


class BusyError(ZfsRootError):
    """资源被占用（挂载中 / 容器运行中），无法销毁"""

    code = "BUSY"


class InvalidRootfsError(ZfsRootError):
    """容器目标目录看起来不是一个操作系统根文件系统"""

    code = "INVALID_ROOTFS"


class NotRunningError(ZfsRootError):
    """容器未运行"""

    code = "NOT_RUNNING"


class StageOrderError(ZfsRootError):
    """阶段准入检查失败：只能执行紧随当前状态的下一个阶段"""

    code = "STAGE_ORDER"


class LockError(ZfsRootError):
    """另一个进程正持有同一构建的锁"""

    code = "LOCKED"


class ExternalToolError(ZfsRootError):
    """外部命令返回非零，stderr 原样透传供运维诊断"""

    code = "EXTERNAL_TOOL"

    def __init__(
        self, message: str, *, argv: list[str] | None = None,
        returncode: int = 1, stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = argv or []
        self.returncode = returncode
        self.stderr = stderr
        if returncode == 124:
            self.exit_code = EXIT_TIMEOUT_ERROR


class RollbackError(ZfsRootError):
    """回滚栈遇到首个失败即停止，状态不确定，需要人工介入"""

    code = "ROLLBACK_FAILED"

    def __init__(self, message: str, remaining: list[str] | None = None) -> None:
        super().__init__(message)
        self.remaining = remaining or []


class InternalError(ZfsRootError):
    """内部错误：阶段成功后状态未发生变化（防止死循环）"""

    code = "INTERNAL_ERROR"
