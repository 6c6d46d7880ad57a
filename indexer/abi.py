"""
abi.py - Contract ABI decoding for the account path learner.

The binary ABI format is not implemented here. Decoders plug in behind
AbiDecoder; JsonAbiDecoder handles ABIs published as JSON text.
"""

import json
from typing import List


class AbiDecodeError(ValueError):
    pass


class AbiDecoder:
    """Turns a raw ABI payload into {actions: [...], structs: [...]}."""

    def decode(self, raw: bytes) -> dict:
        raise NotImplementedError


class JsonAbiDecoder(AbiDecoder):

    def decode(self, raw: bytes) -> dict:
        try:
            abi = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise AbiDecodeError(f"ABI is not JSON text: {exc}") from exc
        if not isinstance(abi, dict):
            raise AbiDecodeError("ABI root must be an object")

        actions = abi.get("actions") or []
        structs = abi.get("structs") or []
        for action in actions:
            _require_keys(action, ["name", "type"], "action")
        for struct in structs:
            _require_keys(struct, ["name", "fields"], "struct")
            for field in struct["fields"]:
                _require_keys(field, ["name", "type"], "field")

        return {
            "actions": [{"name": a["name"], "type": a["type"]} for a in actions],
            "structs": [
                {
                    "name": s["name"],
                    "base": s.get("base") or "",
                    "fields": [{"name": f["name"], "type": f["type"]} for f in s["fields"]],
                }
                for s in structs
            ],
        }


def _require_keys(item, keys: List[str], kind: str):
    if not isinstance(item, dict) or any(k not in item for k in keys):
        raise AbiDecodeError(f"Malformed ABI {kind}: {item!r}")
