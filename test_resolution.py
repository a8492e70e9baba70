"""
Resolution strategy tests: step text -> files, content, commands, packages.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from conftest import make_plan
from resolution import (
    CodeBlockStage,
    ContentResolver,
    TaskStage,
    TemplateStage,
    extract_commands,
    extract_file_names,
    extract_packages,
    match_descriptor,
    resolve_modify_target,
    resolve_targets,
    template_for,
)
from schemas import FileDescriptor, Task


FILES = [
    FileDescriptor(path="src/components/PostList.tsx", purpose="list posts"),
    FileDescriptor(path="src/components/PostForm.tsx", purpose="new post form"),
    FileDescriptor(path="src/lib/api.ts", purpose="api client"),
]


# =============================================================================
# FILE NAMES AND TARGETS
# =============================================================================

def test_parenthetical_list_gives_one_name_per_item():
    names = extract_file_names(
        "3.1 컴포넌트 생성 (PostList.tsx, PostForm.tsx)", [], FILES, 0
    )
    assert names == ["PostList.tsx", "PostForm.tsx"]


def test_parenthetical_prose_is_not_a_file_name():
    names = extract_file_names("Create the api client (see notes above)", [], FILES, 2)
    assert names == ["api.ts"]


def test_path_near_verb():
    names = extract_file_names("src/lib/api.ts 생성", [], FILES, 0)
    assert names == ["src/lib/api.ts"]


def test_task_target_basename_in_text():
    tasks = [Task(type="create", target="src/hooks/usePosts.ts")]
    names = extract_file_names("Add the usePosts.ts hook", tasks, [], 0)
    assert names == ["usePosts.ts"]


def test_index_fallback():
    assert extract_file_names("Do the second one", [], FILES, 1) == ["PostForm.tsx"]
    assert extract_file_names("Do the tenth one", [], FILES, 9) == ["PostList.tsx"]
    assert extract_file_names("Do anything", [], [], 0) == []


def test_match_descriptor_by_basename():
    assert match_descriptor("PostForm.tsx", FILES).path == "src/components/PostForm.tsx"
    assert match_descriptor("components/PostList.tsx", FILES).path == "src/components/PostList.tsx"
    assert match_descriptor("Missing.tsx", FILES) is None


def test_unmatched_names_are_synthesized():
    targets = resolve_targets("컴포넌트 생성 (PostList.tsx, Footer.tsx)", [], FILES, 0)
    assert [t.path for t in targets] == ["src/components/PostList.tsx", "Footer.tsx"]
    assert targets[1].file_exists is False
    assert targets[1].reason == "extracted from step description"


def test_modify_target_from_text():
    files = [FileDescriptor(path="src/app/layout.tsx"), FileDescriptor(path="src/app/page.tsx")]
    target = resolve_modify_target("src/app/page.tsx 수정", [], files, 0)
    assert target.path == "src/app/page.tsx"


def test_modify_target_falls_back_to_index():
    files = [FileDescriptor(path="src/app/layout.tsx"), FileDescriptor(path="src/app/page.tsx")]
    assert resolve_modify_target("레이아웃 수정", [], files, 1).path == "src/app/page.tsx"
    assert resolve_modify_target("레이아웃 수정", [], [], 0) is None


# =============================================================================
# CONTENT CHAIN
# =============================================================================

BLOCK_CONTENT = "export default function PostList() { return null; }"
TASK_CONTENT = "export const PostList = () => <ul />;"


def test_code_block_beats_task_beats_template():
    both = make_plan(
        tasks=[{"type": "create", "target": "src/components/PostList.tsx", "content": TASK_CONTENT}],
        codeBlocks=[{"filePath": "src/components/PostList.tsx", "content": BLOCK_CONTENT}],
    )
    task_only = make_plan(
        tasks=[{"type": "create", "target": "src/components/PostList.tsx", "content": TASK_CONTENT}],
    )
    neither = make_plan()

    resolver = ContentResolver()
    path = "src/components/PostList.tsx"

    first = resolver.resolve(path, both)
    assert first.content == BLOCK_CONTENT
    assert first.source == "codeBlocks[0] (src/components/PostList.tsx)"

    second = resolver.resolve(path, task_only)
    assert second.content == TASK_CONTENT
    assert second.source == "tasks[0] (src/components/PostList.tsx)"

    third = resolver.resolve(path, neither)
    assert third.source == "template (tsx/jsx)"
    assert "export default function PostList()" in third.content


def test_short_content_is_skipped():
    plan = make_plan(
        codeBlocks=[{"filePath": "src/a.ts", "content": "ok"}],
        tasks=[{"type": "modify", "target": "src/a.ts", "content": "export const a = 1;"}],
    )
    resolved = ContentResolver().resolve("src/a.ts", plan)
    assert resolved.source == "tasks[0] (src/a.ts)"


def test_fuzzy_code_block_match():
    plan = make_plan(codeBlocks=[{"filePath": "src/components/Header.tsx", "content": BLOCK_CONTENT}])
    assert CodeBlockStage().find("Header.tsx", plan.code_blocks) == 0
    assert CodeBlockStage(fuzzy=False).find("Header.tsx", plan.code_blocks) is None


def test_chain_without_template_can_miss():
    resolver = ContentResolver([CodeBlockStage(), TaskStage()])
    assert resolver.resolve("src/none.ts", make_plan()) is None


def test_templates():
    assert template_for("src/lib/api.ts").content == "// api.ts\n"
    assert template_for("src/lib/api.ts").source == "template (ts/js)"
    assert template_for("styles/site.css").source == "template (other)"
    assert TemplateStage().resolve("Nav.jsx", make_plan(), 10).source == "template (tsx/jsx)"


# =============================================================================
# COMMANDS AND PACKAGES
# =============================================================================

def test_parenthetical_command():
    assert extract_commands("개발 서버 실행 (npm run dev)", []) == ["npm run dev"]


def test_parenthetical_without_known_binary_is_ignored():
    assert extract_commands("빌드 (production)", []) == ["npm run build"]


def test_inline_ecosystem_commands():
    assert extract_commands("Run cargo test and then go build ./cmd", []) == [
        "go build ./cmd", "cargo test",
    ]


def test_command_task_lookup():
    tasks = [
        Task(type="command", command="yarn dev"),
        Task(type="command", command="yarn lint"),
    ]
    assert extract_commands("개발 서버를 켭니다", tasks) == ["yarn dev"]


def test_keyword_inference():
    assert extract_commands("서버 시작", []) == ["npm run dev"]
    assert extract_commands("빌드하고 테스트", []) == ["npm run build", "npm test"]


def test_packages_from_plan_first():
    plan = make_plan(packages=["react-icons", "axios"])
    assert extract_packages("패키지 설치 (lodash)", plan) == ["react-icons", "axios"]


def test_packages_from_parenthetical():
    assert extract_packages("패키지 설치 (react-icons, @tanstack/react-query)", make_plan()) == [
        "react-icons", "@tanstack/react-query",
    ]
