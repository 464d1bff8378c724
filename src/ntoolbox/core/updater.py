"""
Firmware update orchestrator.

Drives one firmware update as a linear state machine:

    READING_DATAFLASH -> VALIDATING_FIRMWARE -> EVALUATING_BOOT_MODE
        -> [SWITCHING_BOOT_MODE -> RESTART_AND_WAIT] -> UPLOADING -> SUCCEEDED

Any failure ends in FAILED. A device that has been flashed before and boots
from APROM must be switched to the loader first: the LDROM flag is set in
dataflash, the device restarts, and the update waits (bounded) for it to come
back. A never-flashed device (firmware version 0) already sits in the loader.

Nothing is retried. If the device does not come back, no firmware bytes are
sent and the LDROM flag stays set in the device; the next attempt simply skips
the switch.
"""

import enum
import logging
import time
from typing import Callable, List, Optional

from ..config import UpdateTimings
from ..errors import CompatibilityError, DeviceNotConnectedError, NToolboxError
from ..firmware_loader import validate_firmware
from ..models.registry import device_name
from ..protocol.base import DeviceTransport, ProgressCallback
from .results import OperationResult

logger = logging.getLogger(__name__)

RECONNECT_FAILED_MESSAGE = "Device is not connected. Update process interrupted."


class UpdateState(enum.Enum):
    READING_DATAFLASH = "reading_dataflash"
    VALIDATING_FIRMWARE = "validating_firmware"
    EVALUATING_BOOT_MODE = "evaluating_boot_mode"
    SWITCHING_BOOT_MODE = "switching_boot_mode"
    RESTART_AND_WAIT = "restart_and_wait"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UpdateState.SUCCEEDED, UpdateState.FAILED)


StateCallback = Callable[[UpdateState], None]


class FirmwareUpdater:
    """
    Runs firmware updates against a transport.

    Args:
        transport: Device transport (HidTransport or a test double)
        timings: Delays around the boot-mode switch and upload
        sleep: Sleep function, replaceable in tests
        clock: Monotonic clock used for the reconnect deadline

    Example:
        updater = FirmwareUpdater(HidTransport())
        result = updater.run(FirmwareLoader.load("fw.bin"), progress_cb=print)
    """

    def __init__(
        self,
        transport: DeviceTransport,
        timings: Optional[UpdateTimings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.timings = timings or UpdateTimings()
        self._sleep = sleep
        self._clock = clock
        self._states: List[UpdateState] = []
        self._state_cb: Optional[StateCallback] = None

    def _enter(self, state: UpdateState) -> None:
        self._states.append(state)
        logger.debug(f"Update state -> {state.name}")
        if self._state_cb:
            self._state_cb(state)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def wait_for_reconnect(self) -> bool:
        """
        Poll for the device until it answers or the reconnect timeout passes.

        The device is probed at least once, even with a zero timeout.
        """
        deadline = self._clock() + self.timings.reconnect_timeout
        while True:
            if self.transport.is_connected:
                return True
            if self._clock() >= deadline:
                return False
            self._pause(self.timings.reconnect_poll)

    def run(
        self,
        firmware: bytes,
        skip_validation: bool = False,
        state_cb: Optional[StateCallback] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> OperationResult:
        """
        Flash ``firmware`` (a plain image).

        Args:
            firmware: Plain firmware image, see FirmwareLoader
            skip_validation: Flash even if the image does not mention the
                device's product id
            state_cb: Called on every state transition
            progress_cb: Upload progress, 0..100

        Returns:
            OperationResult. ``metadata["states"]`` lists the visited states,
            ``metadata["boot_mode_switched"]`` tells whether the LDROM flag
            was written.
        """
        self._states = []
        self._state_cb = state_cb
        result = OperationResult.success(operation="update_firmware")
        result.metadata["boot_mode_switched"] = False

        try:
            self._enter(UpdateState.READING_DATAFLASH)
            logger.info("Reading dataflash...")
            dataflash = self.transport.read_dataflash()
            identity = dataflash.identity()
            result.device = device_name(identity.product_id)
            result.metadata["product_id"] = identity.product_id
            logger.info(
                f"Connected to {result.device}, HW v{identity.hardware_version_text}, "
                f"FW v{identity.firmware_version_text}, boot {identity.boot_source.value}"
            )

            self._enter(UpdateState.VALIDATING_FIRMWARE)
            if not validate_firmware(firmware, identity.product_id):
                if not skip_validation:
                    raise CompatibilityError(
                        f"Opened firmware file is not suitable for the connected device "
                        f"({identity.product_id or 'unknown'})."
                    )
                logger.warning("Firmware validation skipped by user override")
                result.add_warning("Firmware does not match the device; validation skipped")

            self._enter(UpdateState.EVALUATING_BOOT_MODE)
            if not dataflash.load_from_ldrom and dataflash.firmware_version > 0:
                self._enter(UpdateState.SWITCHING_BOOT_MODE)
                logger.info("Switching to LDROM...")
                dataflash.load_from_ldrom = True
                self.transport.write_dataflash(dataflash)
                result.metadata["boot_mode_switched"] = True
                self._pause(self.timings.after_dataflash_write)

                self._enter(UpdateState.RESTART_AND_WAIT)
                logger.info("Restarting device...")
                self.transport.restart_device()
                self._pause(self.timings.after_restart)
                if not self.wait_for_reconnect():
                    raise DeviceNotConnectedError(RECONNECT_FAILED_MESSAGE)
                logger.info("Device reconnected")
            else:
                logger.info("Device is already in loader mode, no restart needed")

            self._enter(UpdateState.UPLOADING)
            logger.info("Uploading firmware...")
            self.transport.write_firmware(firmware, progress_cb)
            self._pause(self.timings.after_upload)
            result.bytes_len = len(firmware)

            self._enter(UpdateState.SUCCEEDED)
            logger.info("Firmware successfully updated.")
        except (NToolboxError, OSError) as exc:
            logger.error(f"Firmware update failed: {exc}")
            result.add_error(str(exc))
            self._enter(UpdateState.FAILED)
        finally:
            result.metadata["states"] = [state.name for state in self._states]
            self._state_cb = None

        return result
