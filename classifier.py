"""
Step classifier for planrunner.

WHAT THIS FILE DOES:
-------------------
Maps one free-text step description to the handlers that should try it.

The rules form a fixed-priority cascade, kept as an explicit ordered list so
every rule can be tested on its own and the precedence is visible in one
place:

    PRIMARY (first match only)      FALLBACK (every match, in order)
    1. install   -> INSTALL         6. .env / 환경 변수 -> ENV_VAR
    2. create    -> CREATE          7. 설정 / config    -> CONFIG_FILE
    3. modify    -> MODIFY          8. 분석 / review    -> INFORMATION
    4. command   -> COMMAND
    5. has tasks -> TASK

dispatch_order() returns the first matching primary kind followed by all
matching fallback kinds. The engine runs the handlers in that order and stops
at the first one that returns a result; a handler returning None means "not
mine" and lets the next one try.

MATCHING:
--------
English keywords match at the start of a word, case-insensitively ("Build"
matches "build" and "building", "rebuild" does not match "build"). Korean
keywords match anywhere as substrings, since Korean attaches particles
directly to nouns ("빌드를", "서버에서").
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

from schemas import ActionKind, PlanDocument


Predicate = Callable[[str, PlanDocument], bool]


# =============================================================================
# KEYWORD TABLES
# =============================================================================

INSTALL_KEYWORDS = ["install", "패키지"]
CREATE_KEYWORDS = ["create", "generate", "생성", "만들"]
MODIFY_KEYWORDS = ["modify", "update", "수정"]

COMMAND_KEYWORDS = [
    "개발 서버", "빌드", "테스트", "재시작", "실행", "컴파일",
    "restart", "build", "dev", "run", "test", "compile",
]

# Ecosystem-specific command shapes
COMMAND_PATTERNS = [
    re.compile(r"\bnpm\s+run\s+(dev|build|start|test)", re.IGNORECASE),
    re.compile(r"\byarn\s+(dev|build|start|test)", re.IGNORECASE),
    re.compile(r"\bpnpm\s+run\s+(dev|build|start|test)", re.IGNORECASE),
    re.compile(r"\bpython3?\s+.*(run|test|build)", re.IGNORECASE),
    re.compile(r"\bjava\s+.*(run|test|build)", re.IGNORECASE),
    re.compile(r"\bgo\s+(run|build|test)", re.IGNORECASE),
    re.compile(r"\bcargo\s+(run|build|test)", re.IGNORECASE),
    re.compile(r"\bmvn\s+\S", re.IGNORECASE),
    re.compile(r"\bgradle\s+\S", re.IGNORECASE),
    re.compile(r"\bmake\s+\S", re.IGNORECASE),
    re.compile(r"\bcmake\s+\S", re.IGNORECASE),
]

ENV_KEYWORDS = ["환경 변수", "변수 설정", "변수 추가", ".env", "env", "environment"]
CONFIG_KEYWORDS = ["설정", "config", "configuration"]
INFORMATION_KEYWORDS = [
    "분석", "요약", "제시", "제공", "확인", "검토", "리뷰", "구조", "의존성", "개선",
    "analyze", "analyse", "analysis", "summary", "summarize", "review",
    "inspect", "explain",
]


def _is_ascii(keyword: str) -> bool:
    return all(ord(ch) < 128 for ch in keyword)


def contains_keyword(text: str, keyword: str) -> bool:
    """
    Whether text mentions keyword.

    ASCII keywords must start a word; a leading "." (".env") also counts as a
    word start. Other keywords are plain substrings.
    """
    if not _is_ascii(keyword):
        return keyword in text
    pattern = r"(?<![A-Za-z0-9])" + re.escape(keyword)
    return re.search(pattern, text, re.IGNORECASE) is not None


def contains_any(text: str, keywords: list[str]) -> bool:
    return any(contains_keyword(text, keyword) for keyword in keywords)


def looks_like_command(text: str) -> bool:
    """Command keywords or an ecosystem command pattern."""
    if contains_any(text, COMMAND_KEYWORDS):
        return True
    return any(pattern.search(text) for pattern in COMMAND_PATTERNS)


# =============================================================================
# RULES
# =============================================================================

@dataclass(frozen=True)
class ClassificationRule:
    """One (predicate -> action kind) rule of the cascade."""
    name: str
    kind: ActionKind
    predicate: Predicate
    primary: bool = True

    def matches(self, description: str, plan: PlanDocument) -> bool:
        return self.predicate(description, plan)


RULES: list[ClassificationRule] = [
    ClassificationRule(
        "install", ActionKind.INSTALL,
        lambda text, plan: contains_any(text, INSTALL_KEYWORDS),
    ),
    ClassificationRule(
        "create", ActionKind.CREATE,
        lambda text, plan: contains_any(text, CREATE_KEYWORDS),
    ),
    ClassificationRule(
        "modify", ActionKind.MODIFY,
        lambda text, plan: contains_any(text, MODIFY_KEYWORDS),
    ),
    ClassificationRule(
        "command", ActionKind.COMMAND,
        lambda text, plan: looks_like_command(text),
    ),
    ClassificationRule(
        "task", ActionKind.TASK,
        lambda text, plan: len(plan.tasks) > 0,
    ),
    ClassificationRule(
        "env_var", ActionKind.ENV_VAR,
        lambda text, plan: contains_any(text, ENV_KEYWORDS),
        primary=False,
    ),
    ClassificationRule(
        "config_file", ActionKind.CONFIG_FILE,
        lambda text, plan: contains_any(text, CONFIG_KEYWORDS),
        primary=False,
    ),
    ClassificationRule(
        "information", ActionKind.INFORMATION,
        lambda text, plan: contains_any(text, INFORMATION_KEYWORDS),
        primary=False,
    ),
]


def classify(description: str, plan: PlanDocument) -> Optional[ActionKind]:
    """The single highest-priority kind for a step, or None."""
    order = dispatch_order(description, plan)
    return order[0] if order else None


def dispatch_order(
    description: str,
    plan: PlanDocument,
    rules: list[ClassificationRule] = RULES,
) -> list[ActionKind]:
    """
    Handler kinds to try for a step, in order.

    At most one primary kind (the first that matches), then every matching
    fallback kind in rule order.
    """
    order: list[ActionKind] = []

    for rule in rules:
        if rule.primary and rule.matches(description, plan):
            order.append(rule.kind)
            break

    for rule in rules:
        if not rule.primary and rule.matches(description, plan):
            order.append(rule.kind)

    return order
