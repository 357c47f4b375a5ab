from __future__ import annotations

from collections.abc import Mapping, Sequence

from storyplay.modules.llm.schemas import CustomizationQuestion

_STORY_JSON_OPENING = """{
  "story": "Your opening story text here with detailed visual descriptions...",
  "choices": [
    "Choice 1 description",
    "Choice 2 description",
    "Choice 3 description",
    "Choice 4 description (optional)"
  ],
  "imagePrompt": "Detailed visual description: [character name] [action] in [specific location] with [lighting], [atmosphere], [key objects], anime art style, high quality, detailed illustration"
}"""

_STORY_JSON_CONTINUE = """{
  "story": "Your continuation text with detailed visual descriptions...",
  "choices": ["Choice 1", "Choice 2", "Choice 3", "Choice 4"] or [],
  "isEnding": true/false,
  "endingType": "heroic/tragic/mysterious/etc" (only if isEnding: true),
  "imagePrompt": "Detailed scene description: [character] [current action] in [specific location] with [specific visual elements], [lighting], [mood], anime art style, detailed illustration"
}"""

_STORY_JSON_ENDING = """{
  "story": "Your ending text here (referencing character when appropriate with vivid descriptions)...",
  "endingType": "heroic/tragic/mysterious/redemptive/ironic/bittersweet",
  "isEnding": true,
  "imagePrompt": "Description of the final scene for image generation"
}"""

_QUESTIONS_JSON = """{
  "questions": [
    {
      "question": "What is your protagonist's name?",
      "type": "text",
      "maxLength": 30
    },
    {
      "question": "Choose your protagonist's gender:",
      "type": "multiple_choice",
      "options": ["Male", "Female"]
    }
  ]
}"""


def _answer_for(answers: Mapping[str, str] | None, index: int) -> str:
    if not answers:
        return ""
    return str(answers.get(str(index)) or "").strip()


def build_character_profile(
    answers: Mapping[str, str] | None,
    questions: Sequence[CustomizationQuestion] | None,
    *,
    heading: str,
) -> str:
    if not answers or not questions:
        return ""
    lines: list[str] = []
    for index, question in enumerate(questions):
        answer = _answer_for(answers, index)
        if answer:
            lines.append(f"{question.question} {answer}")
    if not lines:
        return ""
    return f"\n\n{heading}:\n" + "\n".join(lines) + "\n"


def build_customization_questions_prompt(title: str, description: str) -> str:
    return f"""
You are an AI that creates personalized interactive story experiences. Based on the story title and description provided, generate 3-5 thoughtful customization questions that will help create a more personalized and immersive experience for the player.

Story Title: "{title}"
Story Description: "{description}"

Create questions that could include:
- Character details (name, gender, appearance, background)
- Skills, abilities, or professions relevant to the story
- Relationships or backstory elements

Only character name and gender are required. Do not ask for name or gender when the story is about established characters who keep their original names.

Return your response as JSON in this exact format:
{_QUESTIONS_JSON}

Question types available:
- "text": Short text input (use maxLength property)
- "long_text": Multi-line text input (use maxLength property)
- "multiple_choice": Selection from predefined options (use options array)

Generate 3-5 questions total, focusing on the most important aspects for this specific story.
"""


def build_opening_prompt(
    title: str,
    description: str,
    answers: Mapping[str, str] | None = None,
    questions: Sequence[CustomizationQuestion] | None = None,
) -> str:
    profile = build_character_profile(answers, questions, heading="CHARACTER CUSTOMIZATION")
    return f"""
You are an interactive storytelling AI creating a branching narrative experience.
The story should be interesting with twists and turns and a bit fast paced.

Title: "{title}"
Description: "{description}"
{profile}
Generate the opening scene of this interactive story. The story should:
1. Incorporate the character customization details naturally into the narrative
2. Set up an engaging scenario with clear stakes that feels personal to this character
3. Introduce the setting and situation in an immersive way with VIVID VISUAL DETAILS
4. Keep the scene short
5. Present a situation that requires a decision
6. End at a choice point where the user must decide what to do next
7. Include specific details about: location, lighting, atmosphere, objects, and character positioning

After the story text, provide 3-4 specific choice options that will lead to different story branches.
Also generate a detailed image prompt that captures the specific visual elements of this scene.

Format your response as JSON:

{_STORY_JSON_OPENING}
"""


def build_continue_prompt(
    title: str,
    story_context: str,
    user_choice: str,
    history_text: str,
    *,
    story_parts: int,
    user_choices: int,
    is_custom_input: bool = False,
    answers: Mapping[str, str] | None = None,
    questions: Sequence[CustomizationQuestion] | None = None,
) -> str:
    profile = build_character_profile(answers, questions, heading="CHARACTER CONTEXT (maintain consistency)")
    action_label = "User's own action" if is_custom_input else "User's choice/action"
    return f"""
You are continuing an interactive story. Here's the context:

Title: "{title}"
Previous story context: "{story_context}"
{action_label}: "{user_choice}"
Story parts so far: {story_parts}
User choices made: {user_choices}
{profile}
IMPORTANT:
1. Maintain character consistency throughout the story
2. Reference the character's name, traits, and background when appropriate
3. Include VIVID VISUAL DESCRIPTIONS of the new scene
4. Keep the scene short and a bit fast paced
5. The ending depends on the user's choices; the character may fail their goal.

Continue the story based on the user's choice, showing the immediate consequences and setting up the next decision point.

ENDING CRITERIA - End the story if ANY of these conditions are met:
- Story has reached 8+ choice points and feels complete
- A definitive victory, defeat, or resolution has been achieved
- Character's main goal has been accomplished or definitively failed
- A major sacrifice or transformation concludes the arc

CRITICAL: Your response MUST be valid JSON only. Format your response as JSON:

{_STORY_JSON_CONTINUE}

Current story:
{history_text}
"""


def build_ending_prompt(
    title: str,
    history_text: str,
    reason: str | None = None,
    answers: Mapping[str, str] | None = None,
    questions: Sequence[CustomizationQuestion] | None = None,
) -> str:
    profile = build_character_profile(answers, questions, heading="CHARACTER DETAILS")
    return f"""
Create a satisfying conclusion for this interactive story:

Title: "{title}"
Reason for ending: "{reason or "natural conclusion"}"
Complete story: {history_text}
{profile}
Write a conclusive ending that:
1. Wraps up the main plot
2. Acknowledges the user's journey and choices
3. References how the character's traits influenced the outcome
4. Provides emotional closure appropriate to this character
5. Includes a vivid final scene description

Format as JSON:
{_STORY_JSON_ENDING}
"""
