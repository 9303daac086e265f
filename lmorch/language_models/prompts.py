"""
This module centralizes the storage and definition of the prompts that
specialize a chat with a language model for a specific function. Each
prompt is collected in a PromptDefinition object, identified by its
name. The module supports predefined prompts and the specification of
custom prompts to interoperate with the rest of the package.

The predefined prompts are

    - "summarizer"
    - "conversation_summarizer"

The "conversation_summarizer" prompt is the condense instruction used
by summary memory to fold older messages into a summary.

These prompts may be retrieved from the module-level dictionary
`prompt_library`, as shown in the example below.

**Example**:

    ```python
    from lmorch.language_models.prompts import prompt_library
    definition = prompt_library["summarizer"]
    text = definition.prompt.format(text="Apples are healthy food")
    ```

New prompts may be added dynamically to the dictionary with the
`create_prompt` function. Once defined, a prompt may be turned into a
message template with `to_template`, and thus into the first step of a
runnable pipeline:

    ```python
    from lmorch.language_models.prompts import (
        prompt_library,
        create_prompt,
    )
    create_prompt("Provide the questions the following text answers:\\n"
        + "\\nTEXT:\\n{text}", name = "question_creation")
    pipeline = (
        prompt_library["question_creation"].to_template().to(model)
    )
    response = pipeline.run({'text': "Apples are healthy food"})
    ```
"""

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict

from .lazy_dict import LazyLoadingDict

if TYPE_CHECKING:
    from .runnables import MessageTemplate


class PromptDefinition(BaseModel):
    """Groups all properties that define a prompt uniquely"""

    name: str
    prompt: str
    system_prompt: str | None = None

    model_config = ConfigDict(frozen=True, extra='forbid')

    def to_template(self) -> 'MessageTemplate':
        """A message template with the system prompt, if any, and the
        prompt as the user message."""
        from .runnables import MessageTemplate

        template = MessageTemplate()
        if self.system_prompt:
            template.system(self.system_prompt)
        return template.user(self.prompt).with_name(self.name)


# List of pre-defined prompts
PromptNames = Literal[
    "summarizer",
    "conversation_summarizer",
]


# The factory function that creates the prompt definitions
def _create_prompt(prompt_name: PromptNames) -> PromptDefinition:
    match prompt_name:
        case "summarizer":  # --- prompt case definition
            return PromptDefinition(
                name=prompt_name,
                prompt="""
Write a concise summary of the following: "{text}"

SUMMARY:
""",
            )
        case "conversation_summarizer":  # --- prompt case definition
            return PromptDefinition(
                name=prompt_name,
                prompt="""
Summarize the following conversation. Keep the facts, the decisions
and the open questions that the participants may refer to later, and
integrate the PREVIOUS SUMMARY if one is given. Be concise.

----
PREVIOUS SUMMARY: {summary}

----
CONVERSATION:
{text}

----
SUMMARY:
""",
                system_prompt="You condense conversations into short "
                + "summaries that preserve their essential context.",
            )
        case _:  # do not remove this
            raise ValueError(f"Invalid prompt: {prompt_name}")


# a module-level typed dictionary for the preformed prompts
prompt_library = LazyLoadingDict(_create_prompt)


def create_prompt(
    prompt: str,
    name: str,
    *,
    system_prompt: str | None = None,
    replace: bool = False,
) -> PromptDefinition:
    """
    Adds a custom prompt template to the prompt dictionary.

    Args:
        prompt: the prompt text.
        name: the name of the prompt
        system_prompt: an optional system prompt text.
        replace: replace an existing definition with the same name.
            If False, redefining a prompt raises a ValueError.

    Returns:
        the prompt definition.
    """

    # We abuse the lack of run-time checks for Literals here. We do
    # this because we want the availability of the preformed prompts
    # given by Literal but also the flexibility to add new prompts.
    definition = PromptDefinition(
        name=name,
        prompt=prompt,
        system_prompt=system_prompt,
    )
    if replace and name in prompt_library:
        del prompt_library[name]  # type: ignore
    prompt_library[name] = definition  # type: ignore
    return definition
