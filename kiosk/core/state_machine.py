from kiosk.core.errors import InvalidTransitionError

# Flow states (one FlowSession per kiosk surface instance)

# Waiting for the first character of a new input cycle
IDLE = "IDLE"

# Characters arriving; debounce settle timer running
AWAITING_SETTLED_INPUT = "AWAITING_SETTLED_INPUT"

# Guard held; format checked; self-assignment check; lookup in flight
VALIDATING = "VALIDATING"

# Lookup answered; branching on the result
RESOLVING = "RESOLVING"

# Operator decision points (guard stays held)
CONFIRM_REQUIRED = "CONFIRM_REQUIRED"
LATE_REVIEW_REQUIRED = "LATE_REVIEW_REQUIRED"

# Executor running under the watchdog
EXECUTING = "EXECUTING"

# Terminal states: auto-reset to IDLE after a display delay
SUCCESS_TERMINAL = "SUCCESS_TERMINAL"
ERROR_TERMINAL = "ERROR_TERMINAL"
REJECTION_TERMINAL = "REJECTION_TERMINAL"

# Kiosk mode left through the exit confirmation; no further events accepted
EXITED = "EXITED"

TERMINAL_STATES = (SUCCESS_TERMINAL, ERROR_TERMINAL, REJECTION_TERMINAL)
INPUT_STATES = (IDLE, AWAITING_SETTLED_INPUT)

VALID_TRANSITIONS = {
    IDLE: (AWAITING_SETTLED_INPUT, EXITED),
    AWAITING_SETTLED_INPUT: (AWAITING_SETTLED_INPUT, IDLE, VALIDATING, ERROR_TERMINAL, EXITED),
    VALIDATING: (RESOLVING, ERROR_TERMINAL, EXITED),
    RESOLVING: (REJECTION_TERMINAL, CONFIRM_REQUIRED, LATE_REVIEW_REQUIRED, EXECUTING, ERROR_TERMINAL, EXITED),
    CONFIRM_REQUIRED: (EXECUTING, IDLE, EXITED),
    LATE_REVIEW_REQUIRED: (EXECUTING, IDLE, EXITED),
    # REJECTION_TERMINAL: payment canceled on the terminal
    EXECUTING: (SUCCESS_TERMINAL, ERROR_TERMINAL, REJECTION_TERMINAL),
    SUCCESS_TERMINAL: (IDLE, EXITED),
    ERROR_TERMINAL: (IDLE, EXITED),
    REJECTION_TERMINAL: (IDLE, EXITED),
    EXITED: (),
}


def check_transition(from_state: str, to_state: str, reason: str = "") -> None:
    if to_state not in VALID_TRANSITIONS.get(from_state, ()):
        raise InvalidTransitionError(from_state, to_state, reason)
