"""Prompt templates using Jinja2."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

PROMPTS_DIR = Path(__file__).parent
_env = Environment(loader=FileSystemLoader(PROMPTS_DIR), keep_trailing_newline=True)


def render_review_file_prompt(
    new_path: str,
    git_diff: str,
    old_file: str | None,
    language: str,
) -> str:
    """Render the per-file review prompt."""
    template = _env.get_template("review_file.jinja2")
    return template.render(
        new_path=new_path,
        git_diff=git_diff,
        old_file=old_file,
        language=language,
    )


def render_same_issue_prompt(file_content: str, comments: list) -> str:
    """Render the prompt asking whether two comments describe one issue."""
    template = _env.get_template("same_issue.jinja2")
    return template.render(file_content=file_content, comments=comments)
