"""
Script security validation.

Scripts are checked line by line with case-insensitive substring matching.
Trusted scripts (defined in workflow configuration) are only rejected for
destructive commands; untrusted scripts (e.g. LLM generated) are rejected for
anything touching privileges, the network, system state or sensitive paths.
"""

import logging
from typing import Iterable, Iterator, Tuple

from .types import ScriptValidationResult, SecurityContext

logger = logging.getLogger(__name__)

EXTREMELY_DANGEROUS_COMMANDS = (
    "rm -rf /",
    "rm -rf /*",
    "dd if=/dev/zero of=/dev/",
    "mkfs.",
    "fdisk",
    ":(){ :|:& };:",  # fork bomb
    "> /dev/",
)

POTENTIALLY_DANGEROUS_COMMANDS = (
    "rm ",
    "sudo ",
    "chmod ",
    "chown ",
    "mv ",
    "cp /",
)

DANGEROUS_COMMANDS = (
    "rm ", "sudo ", "su ", "chmod ", "chown ", "passwd ",
    "useradd ", "userdel ", "groupadd ", "groupdel ",
    "mount ", "umount ", "fdisk ", "mkfs.", "fsck",
    "iptables ", "ufw ", "firewall-cmd ",
    "crontab ", "systemctl ", "service ",
    "kill ", "killall ", "pkill ",
    "eval ", "exec ", "source ", ". ",
    "curl ", "wget ", "nc ", "netcat ", "telnet ",
    "ssh ", "scp ", "rsync ", "ftp ", "sftp ",
)

PATH_TRAVERSAL_PATTERNS = (
    "../",
    "..\\",
    "/etc/",
    "/proc/",
    "/sys/",
    "/dev/",
    "/root/",
    "/boot/",
)

NETWORK_OPERATIONS = (
    "curl ", "wget ", "nc ", "netcat ", "telnet ",
    "ssh ", "scp ", "rsync ", "ftp ", "sftp ",
    "ping ", "nmap ", "netstat ", "ss ",
)

SYSTEM_MODIFICATIONS = (
    "systemctl ", "service ", "crontab ",
    "mount ", "umount ", "swapon ", "swapoff ",
    "modprobe ", "insmod ", "rmmod ",
    "iptables ", "ufw ", "firewall-cmd ",
)


def _contains_any(line: str, patterns: Iterable[str]) -> bool:
    lowered = line.lower()
    return any(pattern.lower() in lowered for pattern in patterns if pattern)


def _script_lines(script: str) -> Iterator[Tuple[int, str]]:
    """Yield (line number, stripped line), skipping blanks and comments."""
    for number, line in enumerate(script.split("\n"), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield number, line


def validate_script(script: str, context: SecurityContext) -> ScriptValidationResult:
    """
    Validate a script against a security context.

    Args:
        script: Script text
        context: Security policy

    Returns:
        ScriptValidationResult; ``is_secure`` is False when any violation
        was found
    """
    result = ScriptValidationResult(sanitized_script=script)

    if context.max_file_size > 0 and len(script.encode()) > context.max_file_size:
        result.violations.append(
            f"Script exceeds maximum allowed size of {context.max_file_size} bytes"
        )

    if context.is_trusted_source:
        logger.info("Validating script from trusted source")
        checks = (("Extremely dangerous command", EXTREMELY_DANGEROUS_COMMANDS),)
    else:
        logger.info("Validating script from untrusted source with strict security")
        checks = (
            ("Dangerous command", DANGEROUS_COMMANDS),
            ("Path traversal", PATH_TRAVERSAL_PATTERNS),
            ("Network operation", NETWORK_OPERATIONS),
            ("System modification", SYSTEM_MODIFICATIONS),
        )

    for number, line in _script_lines(script):
        for label, patterns in checks:
            if _contains_any(line, patterns):
                result.violations.append(f"Line {number}: {label} detected: {line}")

        if _contains_any(line, context.blocked_commands):
            result.violations.append(f"Line {number}: Blocked command detected: {line}")

        if context.is_trusted_source and _contains_any(line, POTENTIALLY_DANGEROUS_COMMANDS):
            result.warnings.append(f"Line {number}: Potentially dangerous command: {line}")

    result.is_secure = not result.violations
    if not result.is_secure:
        logger.warning(f"Script failed security validation: {result.violations}")
    return result
