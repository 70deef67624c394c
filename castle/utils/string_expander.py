"""Expansion of `%{key}` placeholders in strings, mappings and JSON trees.

* `%{key}` is replaced by the value of `key`; unknown keys and keys with empty value expand to
  empty string
* `\\%{key}` is kept as literal `%{key}`
* `%` that is not followed by `{` is kept as is
* unterminated `%{key` expands to empty string
"""

import typing as tp

JsonType = dict[str, "JsonType"] | list["JsonType"] | str | int | float | bool | None


class StringExpander:
    """Base class for placeholder expanders."""

    def lookup(self, key: str) -> str | None:
        """Return value for the `key`, or `None` when the key is unknown."""
        raise NotImplementedError

    def expand_str(self, text: str) -> str:
        out: list[str] = []
        pos = 0
        text_len = len(text)
        while pos < text_len:
            char = text[pos]
            if char == "\\" and text.startswith("%", pos + 1):
                out.append("%")
                pos += 2
            elif char == "%" and text.startswith("{", pos + 1):
                end = text.find("}", pos + 2)
                if end == -1:
                    break
                out.append(self.lookup(text[pos + 2 : end]) or "")
                pos = end + 1
            else:
                out.append(char)
                pos += 1
        return "".join(out)

    def expand_map(self, mapping: tp.Mapping[str, str]) -> dict[str, str]:
        """Expand both keys and values of the mapping."""
        return {self.expand_str(k): self.expand_str(v) for k, v in mapping.items()}

    def expand_json(self, tree: JsonType) -> JsonType:
        """Expand all strings in a JSON tree. Object keys are left untouched."""
        if isinstance(tree, str):
            return self.expand_str(tree)
        if isinstance(tree, list):
            return [self.expand_json(i) for i in tree]
        if isinstance(tree, dict):
            return {k: self.expand_json(v) for k, v in tree.items()}
        return tree

    def expand(self, value: tp.Any) -> tp.Any:
        if isinstance(value, str):
            return self.expand_str(value)
        if isinstance(value, dict) and all(
            isinstance(k, str) and isinstance(v, str) for k, v in value.items()
        ):
            return self.expand_map(value)
        return self.expand_json(value)


class FixedMapStringExpander(StringExpander):
    """Expander that takes values from a fixed mapping."""

    def __init__(self, mapping: tp.Mapping[str, str]) -> None:
        self.mapping = dict(mapping)

    def lookup(self, key: str) -> str | None:
        return self.mapping.get(key)
