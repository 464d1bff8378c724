"""
Safety context and write gating for device operations.

Centralizes the confirmation rules so every front end enforces the same
checks before anything is written to the device:

- writes need explicit permission plus a confirmation (interactive prompt
  or the ``WRITE`` token);
- skipping the firmware compatibility check needs the exact
  ``SKIP VALIDATION`` token, which cannot be produced by a stray flag.
"""

import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..errors import WritePermissionError

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"

# Exact phrase required to flash a firmware that does not match the device
SKIP_VALIDATION_TOKEN = "SKIP VALIDATION"


@dataclass
class SafetyContext:
    """
    Safety context for write operations.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the front end can prompt for confirmation
        device: Device name shown in the confirmation details
        override_token: Must equal SKIP_VALIDATION_TOKEN to bypass the
            firmware compatibility check
        warnings: Warning messages accumulated during the operation
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    device: str = ""
    override_token: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def skip_validation(self) -> bool:
        """True only for the exact override phrase."""
        return self.override_token == SKIP_VALIDATION_TOKEN

    def to_details_dict(self, target: str = "", bytes_length: int = 0) -> dict:
        details = {
            "device": self.device or "Unknown",
            "target": target,
            "bytes_length": bytes_length,
        }
        if self.skip_validation:
            details["skip_validation"] = True
        if self.warnings:
            details["warnings"] = self.warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    target: str = "",
    bytes_length: int = 0,
) -> None:
    """
    Enforce write permission rules.

    Rules enforced:
    1. Write must be enabled
    2. A confirmation token, when present, must match exactly
    3. Otherwise the user must confirm interactively

    Args:
        ctx: Safety context
        target: What is about to be written (e.g. "dataflash", "firmware")
        bytes_length: Number of bytes to write

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = ctx.to_details_dict(target, bytes_length)

    if not ctx.write_enabled:
        raise WritePermissionError(
            "Write operation requires explicit permission. Use the --write flag.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if not ctx.prompt_confirmation:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Write aborted by user.",
            details=details,
        )


def create_cli_safety_context(
    write_flag: bool,
    device: str = "",
    confirmation_token: Optional[str] = None,
    override_token: Optional[str] = None,
) -> SafetyContext:
    """
    Create a SafetyContext configured for CLI usage.

    Interactive prompting is only enabled on a TTY without a token.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None
    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        device=device,
        override_token=override_token,
    )
