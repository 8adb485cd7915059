"""输入校验

构建名、主机名、架构、发行版、安装配置档的校验。
全部在任何变更之前执行，失败抛 ValidationError。
"""

from __future__ import annotations

import re

from zfsroot.core.exceptions import ValidationError

BUILD_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
BUILD_NAME_MAX_LENGTH = 50
HOSTNAME_PATTERN = re.compile(r"^[a-z0-9.-]+$")  # 仅小写，符合 RFC
HOSTNAME_MAX_LENGTH = 63

VALID_PROFILES = ("minimal", "standard", "full")
VALID_ARCHITECTURES = ("amd64", "arm64", "i386")
VALID_DISTRIBUTIONS = ("ubuntu", "debian")


def validate_build_name(name: str, context: str = "构建名") -> str:
    if not name or not BUILD_NAME_PATTERN.match(name):
        raise ValidationError(
            f"{context}格式无效: '{name}'，只允许字母、数字、点、连字符和下划线"
        )
    if name in (".", ".."):
        raise ValidationError(f"{context}无效: '{name}'")
    if len(name) > BUILD_NAME_MAX_LENGTH:
        raise ValidationError(
            f"{context}过长: '{name}'，最多 {BUILD_NAME_MAX_LENGTH} 个字符"
        )
    return name


def validate_hostname(hostname: str) -> str:
    if not hostname or not HOSTNAME_PATTERN.match(hostname):
        raise ValidationError(
            f"主机名格式无效: '{hostname}'，只允许小写字母、数字、点和连字符"
        )
    if len(hostname) > HOSTNAME_MAX_LENGTH:
        raise ValidationError(
            f"主机名过长: '{hostname}'，最多 {HOSTNAME_MAX_LENGTH} 个字符"
        )
    return hostname


def _validate_choice(value: str, choices: tuple[str, ...], context: str) -> str:
    if value not in choices:
        raise ValidationError(
            f"{context}无效: '{value}'，可选值: {', '.join(choices)}"
        )
    return value


def validate_profile(profile: str) -> str:
    return _validate_choice(profile, VALID_PROFILES, "安装配置档")


def validate_architecture(arch: str) -> str:
    return _validate_choice(arch, VALID_ARCHITECTURES, "架构")


def validate_distribution(distribution: str) -> str:
    return _validate_choice(distribution, VALID_DISTRIBUTIONS, "发行版")
