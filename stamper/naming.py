"""
Export file naming for render cells
"""

import re
from typing import Mapping

from .config import NamingRule


EXTENSION_RE = re.compile(r'\.[^.]+$')


def base_name(identifier: str) -> str:
    """Strip the last extension: 'ep01.final.png' -> 'ep01.final'"""
    return EXTENSION_RE.sub("", identifier)


def file_name(cell, naming_rules: Mapping[str, NamingRule], extension: str) -> str:
    """
    Export name for a cell: <prefix><base>_<tag>.<extension>

    The rule is looked up by the cell's spec key; a key without a rule
    uses no prefix and the key itself as tag.
    """
    rule = naming_rules.get(cell.spec_key) or NamingRule(filename_prefix="", tag=cell.spec_key)
    return f"{rule.filename_prefix}{base_name(cell.identifier)}_{rule.tag}.{extension.lstrip('.')}"
