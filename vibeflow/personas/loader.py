from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Persona:
    name: str
    label: str
    prompt: str


DEFAULT_PERSONAS: dict[str, dict] = {
    "tech_ceo": {
        "label": "Tech CEO",
        "prompt": "a confident tech CEO: visionary, concise, data-backed, forward-looking",
    },
    "casual_gen_z": {
        "label": "Casual Gen Z",
        "prompt": "a casual Gen Z creator: playful, lowercase-friendly, internet slang used sparingly",
    },
    "thought_leader": {
        "label": "Thought Leader",
        "prompt": "an industry thought leader: insightful, reflective, invites discussion",
    },
    "meme_lord": {
        "label": "Meme Lord",
        "prompt": "a meme-savvy poster: ironic, punchy, references popular meme formats",
    },
    "formal_pro": {
        "label": "Formal Pro",
        "prompt": "a formal professional: polished, precise, no slang or emojis",
    },
    "fun_vibes": {
        "label": "Fun Vibes",
        "prompt": "an upbeat, friendly voice: energetic, warm, a few well-placed emojis",
    },
}


def load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"invalid personas yaml {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"personas yaml must be a mapping: {path}")
    return data


def deep_merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for k, v in override.items():
        if v is None:
            continue
        if isinstance(out.get(k), dict) and isinstance(v, dict):
            out[k] = deep_merge(out[k], v)
            continue
        out[k] = copy.deepcopy(v)
    return out


def load_personas(path: Path | None = None) -> dict[str, Persona]:
    """Built-in personas merged with the optional YAML file.

    The file holds a ``personas`` mapping of ``name -> {label, prompt}``;
    setting a name to ``false`` removes that preset.
    """
    merged = copy.deepcopy(DEFAULT_PERSONAS)
    if path is not None:
        overrides = load_yaml(path).get("personas") or {}
        if not isinstance(overrides, dict):
            raise ValueError(f"'personas' must be a mapping: {path}")
        for name, spec in overrides.items():
            if spec is False:
                merged.pop(name, None)
        merged = deep_merge(merged, {k: v for k, v in overrides.items() if isinstance(v, dict)})

    personas: dict[str, Persona] = {}
    for name, spec in merged.items():
        prompt = str(spec.get("prompt") or "").strip()
        if not prompt:
            logger.warning("persona %s has no prompt, skipped", name)
            continue
        personas[name] = Persona(name=name, label=str(spec.get("label") or name), prompt=prompt)
    return personas


def resolve_persona_prompt(personas: dict[str, Persona], value: str | None) -> str | None:
    """Preset name -> its prompt; any other non-empty text is used as a custom voice."""
    value = (value or "").strip()
    if not value:
        return None
    preset = personas.get(value.lower())
    if preset is not None:
        return preset.prompt
    return value
