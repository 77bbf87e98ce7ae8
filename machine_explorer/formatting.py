import time
from typing import Optional, Union

WEI_PER_UNIT = 10 ** 18
DEFAULT_CURRENCY = "DBC"
DEFAULT_TX_EXPLORER_URL = "https://dbcscan.io/zh/tx/"

SLASH_TYPES = {
    1: "离线惩罚",
    2: "性能惩罚",
    3: "恶意行为惩罚",
}

RENT_REASON_TRANSLATIONS = {
    "not in rent whitelist": "不在租赁白名单中",
    "is rented": "已被租赁",
    "not in staking": "未参与质押",
    "is blocked(in blacklist)": "已被拉黑",
    "is staking but offline": "质押中但离线",
    "not enough staking duration": "质押时长不足",
    "is offline": "设备离线",
    "not registered": "未注册",
    "can not rent before next renter can rent time": "尚未到达可租赁时间",
    "machine staking time less than 1 hours": "机器质押时间少于1小时",
}


def format_duration(seconds: int) -> str:
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    remaining = seconds % 60
    if hours > 0:
        return "%d小时%d分钟%d秒" % (hours, minutes, remaining)
    if minutes > 0:
        return "%d分钟%d秒" % (minutes, remaining)
    return "%d秒" % remaining


def format_address(address: Optional[str]) -> Optional[str]:
    if not address or len(address) < 10:
        return address
    return "%s...%s" % (address[:6], address[-4:])


def format_amount(base_units: Union[int, str], currency: str = DEFAULT_CURRENCY) -> str:
    """Whole native-token units, floored, e.g. ``1500000000000000000`` -> "1 DBC"."""
    units = int(base_units) // WEI_PER_UNIT
    return "%d %s" % (units, currency)


def format_tx_hash(tx_hash: Optional[str]) -> str:
    if not tx_hash or tx_hash in ("0x", "0x0"):
        return "-"
    return "%s...%s" % (tx_hash[:6], tx_hash[-4:])


def tx_url(tx_hash: str, base_url: str = DEFAULT_TX_EXPLORER_URL) -> str:
    return "%s%s" % (base_url, tx_hash)


def format_slash_type(slash_type: Union[int, str]) -> str:
    try:
        value = int(slash_type)
    except (TypeError, ValueError):
        return "未知类型(%s)" % slash_type
    return SLASH_TYPES.get(value, "未知类型(%d)" % value)


def translate_rent_reason(reason: str) -> str:
    return RENT_REASON_TRANSLATIONS.get(reason, reason)


def format_timestamp(ts: int) -> str:
    local = time.localtime(ts)
    return "%d/%d/%d %02d:%02d:%02d" % (
        local.tm_year,
        local.tm_mon,
        local.tm_mday,
        local.tm_hour,
        local.tm_min,
        local.tm_sec,
    )
