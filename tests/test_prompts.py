"""Tests for prompt assembly: Handlebars rendering, persona extraction,
instruction building from the command policy, and turn ordering."""

import pytest

from craftbot.models import ConversationTurn, PermissionLevel, Personality
from craftbot.pipeline.authorizer import CommandAuthorizer
from craftbot.prompts import (
    PromptError,
    SceneContext,
    assemble,
    build_instructions,
    build_system_prompt,
    extract_persona,
    persona_text,
    render_prompt,
    summary_prompt,
)

from tests.helpers import make_character, player_message

AUTH = CommandAuthorizer()


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_if_conditional():
    tpl = "{{#if show}}yes{{else}}no{{/if}}"
    assert render_prompt(tpl, {"show": True}) == "yes"
    assert render_prompt(tpl, {"show": False}) == "no"


def test_render_join_helper():
    assert render_prompt('{{{join names ", "}}}', {"names": ["Alex", "Steve"]}) == "Alex, Steve"


def test_render_missing_variable():
    assert render_prompt("Hello {{name}}!", {}) == "Hello !"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── persona ──────────────────────────────────────────────────


def test_persona_prefers_character_context():
    character = make_character(personality=Personality(
        character_context="You are Bob the baker.",
        system_prompt="You are someone else.",
    ))
    assert persona_text(character) == "You are Bob the baker."


def test_legacy_prompt_truncated_at_first_marker():
    legacy = (
        "You are Bob, a grumpy miner.\n\n"
        "AVAILABLE COMMANDS:\n- give\n\n"
        "RESPONSE FORMAT - use tags"
    )
    assert extract_persona(legacy) == "You are Bob, a grumpy miner."


def test_legacy_prompt_without_markers_kept_whole():
    assert extract_persona("  Just a persona.  ") == "Just a persona."


def test_persona_fallback():
    character = make_character(name="Ada")
    assert persona_text(character) == "You are Ada, an AI entity in a Minecraft world."


# ── instructions ─────────────────────────────────────────────


def test_instructions_read_only_when_cannot_execute():
    character = make_character(can_execute=False)
    text = build_instructions(character, AUTH)
    assert "READ-ONLY access" in text
    assert "RESPONSE FORMAT" in text
    assert "CRITICAL RULES" in text


def test_instructions_list_allowed_commands_by_category():
    character = make_character(level=PermissionLevel.ENVIRONMENT, allowed=["give"])
    text = build_instructions(character, AUTH)
    assert "AVAILABLE MINECRAFT COMMANDS (environment level)" in text
    assert "Players: give" in text
    assert "Chat: say, tell, msg, me, tellraw" in text
    assert "Your permission level: environment" in text
    # moderator-level commands are not offered
    assert "kick" not in text.split("COMMAND SYNTAX")[0].split("AVAILABLE MINECRAFT")[1]


def test_instructions_omit_denied_commands():
    character = make_character(denied=["weather"])
    text = build_instructions(character, AUTH)
    assert "World: time, particle, playsound\n" in text


# ── system prompt and assembly ───────────────────────────────


def test_system_prompt_scene_lines():
    character = make_character(name="Bob")
    scene = SceneContext(players=["Steve", "Alex"], ai_entities=["Bob", "Ada"])
    prompt = build_system_prompt(character, scene, AUTH)
    assert prompt.startswith("You are Bob, an AI entity in a Minecraft world.")
    assert "CURRENT PLAYERS ONLINE: Steve, Alex" in prompt
    assert "OTHER AI ENTITIES: Ada " in prompt


def test_system_prompt_without_scene():
    prompt = build_system_prompt(make_character(), SceneContext(ai_entities=["Bob"]), AUTH)
    assert "CURRENT PLAYERS ONLINE" not in prompt
    assert "OTHER AI ENTITIES" not in prompt


def test_assemble_orders_turns():
    character = make_character(personality=Personality(history_limit=2))
    history = [
        ConversationTurn(role="user", content="Steve: one"),
        ConversationTurn(role="assistant", content="<say>1</say>"),
        ConversationTurn(role="user", content="Steve: two"),
    ]
    turns = assemble(character, history, player_message("three"), SceneContext(), AUTH)

    assert [t.role for t in turns] == ["system", "assistant", "user", "user"]
    assert turns[1].content == "<say>1</say>"
    assert turns[-1].content == "Steve: three"


def test_assemble_includes_state_snapshot():
    turns = assemble(
        make_character(), [], player_message("hi"),
        SceneContext(state={"time": "day"}), AUTH,
    )
    assert turns[-2].role == "system"
    assert turns[-2].content.startswith("Current game state:")
    assert '"time": "day"' in turns[-2].content


def test_assemble_zero_history_limit():
    character = make_character(personality=Personality(history_limit=0))
    history = [ConversationTurn(role="user", content="Steve: old")]
    turns = assemble(character, history, player_message("new"), SceneContext(), AUTH)
    assert len(turns) == 2


def test_summary_prompt_contains_transcript():
    turns = summary_prompt([ConversationTurn(role="user", content="Steve: where is the mine?")])
    assert len(turns) == 1
    assert "user: Steve: where is the mine?" in turns[0].content
