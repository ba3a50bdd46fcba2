"""Prompt library.

Templates ship as package data and are rendered with :class:`string.Template`.
Planning prompts for documents (PRD, technology, design, task analysis and
generation) are prefixed with the shared engineering principles preamble.
"""

from __future__ import annotations

from functools import cache
from importlib import resources
from string import Template


@cache
def _load(name: str) -> Template:
    text = resources.files("snap.prompts").joinpath(name).read_text(encoding="utf-8")
    return Template(text)


def _render(name: str, **values: str) -> str:
    return _load(name).substitute(values).strip()


def _with_preamble(prompt: str) -> str:
    return f"{principles_preamble()}\n\n{prompt}"


def principles_preamble() -> str:
    return _render("principles.md")


def implement(prd_path: str, task_path: str = "", task_id: str = "") -> str:
    if task_path:
        target = (
            f"Implement {task_id} as specified in {task_path}. "
            f"Read {task_path} in full before writing any code."
        )
    else:
        target = (
            "Find the next unimplemented task listed in the PRD and implement it. "
            "Pick the lowest-numbered task whose acceptance criteria are not yet met."
        )
    return _render("implement.md", prd_path=prd_path, target=target)


def ensure_completeness(task_path: str = "", task_id: str = "") -> str:
    if task_path:
        target = f"the task {task_id} described in {task_path}"
    else:
        target = "the task you just implemented"
    return _render("ensure_completeness.md", target=target)


def lint_and_test() -> str:
    return _render("lint_and_test.md")


def code_review() -> str:
    return _render("code_review.md")


def apply_fixes() -> str:
    return _render("apply_fixes.md")


def update_docs() -> str:
    return _render("update_docs.md")


def commit() -> str:
    return _render("commit.md")


def memory_update() -> str:
    return _render("memory_update.md")


def task_summary(task_content: str) -> str:
    return _render("task_summary.md", task_content=task_content)


def requirements() -> str:
    return _render("requirements.md")


def prd(tasks_dir: str, brief: str = "") -> str:
    brief_section = ""
    if brief.strip():
        brief_section = (
            "## Requirements Brief\n\n"
            "Use this brief as the primary input. Do not ask follow-up questions; "
            "record open points in the PRD instead.\n\n"
            f"{brief.strip()}\n"
        )
    return _with_preamble(_render("prd.md", tasks_dir=tasks_dir, brief_section=brief_section))


def technology(tasks_dir: str) -> str:
    return _with_preamble(_render("technology.md", tasks_dir=tasks_dir))


def design(tasks_dir: str) -> str:
    return _with_preamble(_render("design.md", tasks_dir=tasks_dir))


def analyze_tasks(tasks_dir: str) -> str:
    return _with_preamble(_render("analyze_tasks.md", tasks_dir=tasks_dir))


def generate_tasks(tasks_dir: str) -> str:
    return _with_preamble(_render("generate_tasks.md", tasks_dir=tasks_dir))
