"""Solver return codes."""

from enum import IntEnum


class ReturnFlag(IntEnum):
    """Return codes of DaeSolver operations (negative: failure)."""

    SUCCESS = 0
    TSTOP_RETURN = 1
    TOO_MUCH_WORK = -1
    TOO_MUCH_ACC = -2
    ERR_FAIL = -3
    CONV_FAIL = -4
    LINIT_FAIL = -5
    LSETUP_FAIL = -6
    LSOLVE_FAIL = -7
    RES_FAIL = -8
    REP_RES_ERR = -9
    FIRST_RES_FAIL = -12
    LINESEARCH_FAIL = -13
    NO_RECOVERY = -14
    MEM_NULL = -20
    MEM_FAIL = -21
    ILL_INPUT = -22
    NO_MALLOC = -23
    QRHS_FAIL = -30
    FIRST_QRHS_ERR = -31
    REP_QRHS_ERR = -32
    NO_ADJ = -101
    NO_FWD = -102
    NO_BCK = -103
    BAD_TB0 = -104
    GETY_BADT = -107


def get_return_flag_name(flag: int) -> str:
    """Readable name of a return code."""
    try:
        return ReturnFlag(flag).name
    except ValueError:
        return f"UNKNOWN_FLAG({flag})"


def is_success(flag: int) -> bool:
    return flag in (ReturnFlag.SUCCESS, ReturnFlag.TSTOP_RETURN)
