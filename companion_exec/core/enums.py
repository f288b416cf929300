"""Status enumerations for the execution pipeline and the host bridge."""

from enum import Enum


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    PENDING_APPROVAL = "pending_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class BridgeMode(str, Enum):
    DIRECT = "direct"
    MESSAGE = "message"


class Operation(str, Enum):
    EXECUTE_COMMAND = "executeCommand"
    GET_SYSTEM_INFO = "getSystemInfo"
    SAVE_FILE = "saveFile"
    CANCEL = "cancel"
