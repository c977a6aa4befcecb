"""Build chat messages for a persona transformation from the versioned prompt templates."""
from typing import Dict, List, Optional

from pagepersona.prompts.loader import get_system_prompt, get_user_prompt, render
from pagepersona.transform.personas import Persona

COMPONENT = "transform"


def build_messages(persona: Persona, content: str, title: str = "", version: Optional[str] = None) -> List[Dict[str, str]]:
    system = render(
        get_system_prompt(COMPONENT, version),
        persona_name=persona.name,
        persona_instructions=persona.tone,
    )
    user = render(
        get_user_prompt(COMPONENT, version),
        title=title or "Untitled",
        content=content,
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]
