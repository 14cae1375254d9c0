"""Token event signatures and minimal ABI decoding helpers."""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# keccak256 of each event signature (topic0)
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"  # Transfer(address,address,uint256)
WALLET_APPROVED_TOPIC = "0xe305b3c1ab740625308a06aef3808d6e711f93a8f5b388671e66d8338b6a5a38"  # WalletApproved(address)
WALLET_REVOKED_TOPIC = "0x6e439c1129851c7aeb071225f567b51170a74259fb78b95132d3981f1d06a6ee"  # WalletRevoked(address)
STOCK_SPLIT_TOPIC = "0xf3566e11e1564e3e1830f41a9243e7d7ebc0d026c00126e78371f246ec941260"  # StockSplit(uint256,uint256)
SYMBOL_CHANGED_TOPIC = "0xd7ad744cc76ebad190995130eec8ba506b3605612d23b5b9cef8e27f14d138b4"  # SymbolChanged(string,string)
NAME_CHANGED_TOPIC = "0x6c20b91d1723b78732eba64ff11ebd7966a6e4af568a00fa4f6b72c20f58b02a"  # NameChanged(string,string)
TRANSFER_BLOCKED_TOPIC = "0x1a57a13050525e0c7fdd78ac2e358035f7f59a49327a06c897f10ae5eeb6544b"  # TransferBlocked(address,address,uint256)

WORD_HEX_CHARS = 64


def normalize_address(address: str) -> str:
    """Lower-case a 0x-prefixed 20-byte address."""
    address = address.strip().lower()
    if not address.startswith("0x"):
        address = "0x" + address
    if len(address) != 42:
        raise ValueError(f"Not a 20-byte address: {address}")
    int(address[2:], 16)
    return address


def decode_topic_address(topic: str) -> str:
    """Decode an indexed address from a 32-byte topic."""
    topic = topic.lower()
    if topic.startswith("0x"):
        topic = topic[2:]
    if len(topic) != WORD_HEX_CHARS:
        raise ValueError(f"Topic is not 32 bytes: {topic}")
    return normalize_address("0x" + topic[-40:])


def _strip(data: str) -> str:
    data = data[2:] if data.startswith("0x") else data
    if len(data) % WORD_HEX_CHARS:
        raise ValueError("Log data is not word aligned")
    return data


def decode_words(data: str) -> list[int]:
    """Split log data into 32-byte unsigned words."""
    body = _strip(data)
    return [int(body[i:i + WORD_HEX_CHARS], 16) for i in range(0, len(body), WORD_HEX_CHARS)]


def decode_uint256s(data: str, count: int) -> list[int]:
    """Decode exactly ``count`` static uint256 values."""
    words = decode_words(data)
    if len(words) < count:
        raise ValueError(f"Expected {count} words of log data, got {len(words)}")
    return words[:count]


def decode_strings(data: str, count: int) -> list[str]:
    """Decode ``count`` dynamic ``string`` values (head offsets, then tails)."""
    body = _strip(data)
    raw = bytes.fromhex(body)
    if len(raw) < 32 * count:
        raise ValueError(f"Expected {count} string offsets, got {len(raw) // 32} words")
    values = []
    for i in range(count):
        offset = int.from_bytes(raw[i * 32:(i + 1) * 32], "big")
        if offset + 32 > len(raw):
            raise ValueError(f"String offset {offset} out of range")
        length = int.from_bytes(raw[offset:offset + 32], "big")
        start = offset + 32
        if start + length > len(raw):
            raise ValueError(f"String length {length} out of range")
        values.append(raw[start:start + length].decode("utf-8"))
    return values
