"""
Instruction builders for agent runs.
"""

from typing import Sequence

from .models import AnalysisSubject, Task


def _task_header(task: Task) -> list[str]:
    prompt_parts = [f"**Task:** {task.title}"]
    if task.description:
        prompt_parts.append(f"**Details:** {task.description}")
    return prompt_parts


def build_task_prompt(task: Task) -> str:
    """Build the instruction for a single-shot run."""
    prompt_parts = [
        "Complete this task efficiently:",
        "",
        *_task_header(task),
        "",
        "APPROACH:",
        "- Read relevant files first to understand the codebase",
        "- Make focused changes - don't over-engineer",
        "- Keep explanations brief - focus on doing, not explaining",
        "- Test your changes work if possible",
    ]
    return "\n".join(prompt_parts)


def build_iteration_prompt(
    task: Task,
    iteration: int,
    max_iterations: int,
    completion_promise: str,
) -> str:
    """Build the instruction for one ralph loop iteration.

    Args:
        task: Freshest snapshot of the task
        iteration: 1-based iteration number
        max_iterations: Iteration bound of the loop
        completion_promise: Token the agent must wrap in a promise tag when done
    """
    promise_format = f"<promise>{completion_promise}</promise>"

    prompt_parts = [
        *_task_header(task),
        f"**Iteration:** {iteration}/{max_iterations}",
        "",
        f"Work efficiently. When COMPLETE and verified, output: {promise_format}",
        "",
        "Only include the promise tag when genuinely finished.",
        "If more iterations are needed, keep working without the promise tag.",
    ]
    return "\n".join(prompt_parts)


def build_analysis_prompt(subjects: Sequence[AnalysisSubject]) -> str:
    """Build the instruction asking the agent which tasks a codebase already implements."""
    task_list = "\n".join(
        f'{index}. "{subject.title}"' + (f" - {subject.description}" if subject.description else "")
        for index, subject in enumerate(subjects, start=1)
    )

    prompt_parts = [
        "Analyze this codebase to determine which tasks are already implemented.",
        "",
        "TASKS:",
        task_list,
        "",
        "APPROACH:",
        "1. Start with glob to understand the project structure",
        "2. Use grep to find task-related keywords (component names, features, routes)",
        "3. Read files to verify implementation when you find matches",
        "4. Be efficient - use grep before reading full files",
        "",
        "OUTPUT FORMAT (JSON only, no markdown):",
        "{",
        '  "results": [',
        '    {"subjectTitle": "exact title", "status": "complete|partial|not_started", '
        '"confidence": "high|medium|low", "evidence": "brief explanation"}',
        "  ]",
        "}",
        "",
        "RULES:",
        '- Mark "complete" with "high" confidence only if you found clear evidence',
        '- When uncertain, default to "not_started"',
        "- Keep evidence concise (1 sentence)",
        "- Output ONLY valid JSON, nothing else",
    ]
    return "\n".join(prompt_parts)
