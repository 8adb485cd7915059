"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
所有变更类命令（zfs / zpool / mount / machinectl ...）都经由 GuardedExecutor，
由它统一处理 dry-run（只记录不执行）与 debug（执行前打印）。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Protocol

from zfsroot.core.exceptions import ExternalToolError

logger = logging.getLogger(__name__)

# 与 coreutils timeout 保持一致
TIMEOUT_RETURNCODE = 124


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


def format_argv(argv: list[str]) -> str:
    """将 argv 转为可复制粘贴的命令行字符串"""
    return shlex.join(argv)


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    测试时可注入 RecordingExecutor，无需 patch subprocess。
    """

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
        capture: bool = True,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...

    def spawn(self, argv: list[str]) -> subprocess.Popen[bytes] | None:
        """后台启动长期运行的进程（容器）"""
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

class LocalExecutor:
    """本地命令执行器 — 唯一真正创建子进程的地方"""

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
        capture: bool = True,
    ) -> CommandResult:
        try:
            r = subprocess.run(
                argv, capture_output=capture, text=True,
                cwd=cwd, env=env, check=False, timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                returncode=TIMEOUT_RETURNCODE, stdout="",
                stderr=f"命令超时 ({timeout}s): {format_argv(argv)}",
            )
        except FileNotFoundError as e:
            return CommandResult(returncode=127, stdout="", stderr=str(e))
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout or "",
            stderr=r.stderr or "",
        )

    def spawn(self, argv: list[str]) -> subprocess.Popen[bytes] | None:
        return subprocess.Popen(  # noqa: S603
            argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL, start_new_session=True,
        )


# =========================================================================
# dry-run / debug 守卫
# =========================================================================

class GuardedExecutor:
    """变更命令执行器：dry-run 时只记录日志并返回成功，绝不触达底层执行器

    参数:
        inner: 真正执行命令的执行器
        dry_run: 为 True 时所有命令只打印不执行
        debug: 为 True 时在执行前打印命令（非 dry-run 也打印）
    """

    def __init__(
        self, inner: CommandExecutor | None = None, *,
        dry_run: bool = False, debug: bool = False,
    ) -> None:
        self.inner: CommandExecutor = inner or LocalExecutor()
        self.dry_run = dry_run
        self.debug = debug

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
        capture: bool = True,
    ) -> CommandResult:
        cmd_str = format_argv(argv)
        if self.dry_run:
            logger.info("[DRY RUN] Would execute: %s", cmd_str)
            return CommandResult(returncode=0, stdout="", stderr="")
        if self.debug:
            logger.info("执行命令: %s", cmd_str)
        r = self.inner.execute(argv, cwd=cwd, env=env, timeout=timeout, capture=capture)
        if not r.success:
            logger.debug("命令返回 %d: %s\n%s", r.returncode, cmd_str, r.stderr.strip())
        return r

    def spawn(self, argv: list[str]) -> subprocess.Popen[bytes] | None:
        cmd_str = format_argv(argv)
        if self.dry_run:
            logger.info("[DRY RUN] Would start: %s", cmd_str)
            return None
        if self.debug:
            logger.info("后台启动: %s", cmd_str)
        return self.inner.spawn(argv)

    def run(
        self, argv: list[str], *, label: str = "cmd",
        cwd: str | None = None, timeout: int | None = None,
    ) -> CommandResult:
        """执行命令，失败抛 ExternalToolError（stderr 原样透传）"""
        r = self.execute(argv, cwd=cwd, timeout=timeout)
        if not r.success:
            detail = (r.stderr or r.stdout).strip()
            raise ExternalToolError(
                f"{label}失败 (rc={r.returncode}): {format_argv(argv)}\n{detail}",
                argv=argv, returncode=r.returncode, stderr=r.stderr,
            )
        return r


# =========================================================================
# 记录型执行器（测试 / 审计）
# =========================================================================

@dataclass
class RecordingExecutor:
    """记录所有命令、不创建子进程的执行器

    results 按命令前缀（argv 前若干项拼接的字符串）配置返回值，
    未匹配的命令默认返回成功。
    """

    calls: list[list[str]] = field(default_factory=list)
    results: dict[str, CommandResult] = field(default_factory=dict)

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
        capture: bool = True,
    ) -> CommandResult:
        self.calls.append(list(argv))
        cmd_str = " ".join(argv)
        for prefix, result in self.results.items():
            if cmd_str.startswith(prefix):
                return result
        return CommandResult(returncode=0, stdout="", stderr="")

    def spawn(self, argv: list[str]) -> subprocess.Popen[bytes] | None:
        self.calls.append(list(argv))
        return None

    def commands(self) -> list[str]:
        """以字符串形式返回已记录的命令"""
        return [" ".join(c) for c in self.calls]

    def fail(self, prefix: str, stderr: str = "boom", returncode: int = 1) -> None:
        """让以 prefix 开头的命令返回失败"""
        self.results[prefix] = CommandResult(returncode=returncode, stdout="", stderr=stderr)
