from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from storyplay.modules.llm.schemas import CustomizationQuestion

EMPTY_TEXT_SCENE_PROMPT = "fantasy scene with mysterious atmosphere, anime style, detailed digital art"
PROMPT_STYLE_SUFFIX = "anime style, detailed digital art, cinematic lighting"

DEFAULT_DESCRIPTOR = "person"
DEFAULT_NAME = "protagonist"
DEFAULT_SETTING = "fantasy landscape"
DEFAULT_ACTION = "standing with determined expression"
DEFAULT_MOOD = "dramatic and atmospheric mood"
MAX_PROMPT_ELEMENTS = 2

# Tables are ordered; the first matching phrase wins. Compound locations come
# before single-word ones so "dark forest" is not read as "forest".
_COMPOUND_SETTINGS: tuple[tuple[str, str], ...] = (
    ("throne room", "ornate throne room with golden decorations"),
    ("dungeon cell", "dark stone dungeon with iron bars"),
    ("ancient temple", "mystical ancient temple with glowing runes"),
    ("dark forest", "dark forest with twisted ancient trees"),
    ("enchanted forest", "magical forest with glowing mushrooms"),
    ("castle hall", "grand castle hall with tapestries"),
    ("village square", "medieval village square with market stalls"),
    ("mountain path", "treacherous mountain path with cliff edges"),
    ("desert ruins", "ancient desert ruins half-buried in sand"),
    ("ocean cliff", "dramatic cliff overlooking stormy ocean"),
    ("crystal cave", "cave filled with luminescent crystals"),
    ("royal garden", "elaborate royal garden with fountains"),
    ("battlefield", "chaotic battlefield with smoke and banners"),
    ("wizard tower", "tall wizard tower with magical energy"),
    ("underground chamber", "mysterious underground chamber with torches"),
)

_SINGLE_SETTINGS: tuple[tuple[str, str], ...] = (
    ("forest", "dense forest with towering trees"),
    ("castle", "medieval stone castle"),
    ("city", "bustling medieval city"),
    ("dungeon", "dark stone dungeon"),
    ("mountain", "majestic mountain landscape"),
    ("desert", "vast desert with sand dunes"),
    ("ocean", "vast ocean with rolling waves"),
    ("cave", "mysterious cave with rock formations"),
    ("temple", "ancient temple with stone pillars"),
    ("palace", "ornate royal palace"),
    ("tower", "tall stone tower"),
    ("bridge", "stone bridge over water"),
    ("garden", "beautiful garden with flowers"),
    ("library", "grand library with countless books"),
)

_ACTIONS: tuple[tuple[str, str], ...] = (
    # combat
    ("fighting", "engaged in fierce combat"),
    ("attacking", "launching a powerful attack"),
    ("defending", "in defensive combat stance"),
    ("wielding", "wielding weapon with determination"),
    # movement
    ("running", "running with urgent purpose"),
    ("walking", "walking cautiously forward"),
    ("climbing", "climbing with focused effort"),
    ("flying", "soaring through the air"),
    ("falling", "falling through space"),
    ("jumping", "leaping with athletic grace"),
    # magic
    ("casting", "casting spell with glowing magical energy"),
    ("summoning", "summoning magical forces"),
    ("enchanting", "weaving magical enchantments"),
    # social
    ("talking", "in conversation with others"),
    ("arguing", "in heated discussion"),
    ("negotiating", "engaged in tense negotiation"),
    ("pleading", "making desperate plea"),
    # investigation
    ("searching", "carefully searching the area"),
    ("examining", "closely examining something important"),
    ("discovering", "making shocking discovery"),
    ("reading", "reading ancient text intently"),
    # emotion
    ("crying", "overwhelmed with emotion"),
    ("laughing", "filled with joy and laughter"),
    ("praying", "in solemn prayer"),
    ("meditating", "in peaceful meditation"),
)

_MOODS: tuple[tuple[str, str], ...] = (
    ("danger", "dangerous and tense atmosphere"),
    ("threat", "threatening and ominous mood"),
    ("fear", "fearful and suspenseful atmosphere"),
    ("terror", "terrifying and dark mood"),
    ("mystery", "mysterious and enigmatic atmosphere"),
    ("secret", "secretive and hidden mood"),
    ("ancient", "ancient and mystical atmosphere"),
    ("magical", "magical energy crackling in the air"),
    ("enchanted", "enchanted and otherworldly mood"),
    ("mystical", "mystical and ethereal atmosphere"),
    ("peaceful", "serene and peaceful atmosphere"),
    ("joyful", "bright and joyful mood"),
    ("sad", "melancholic and somber atmosphere"),
    ("angry", "intense and heated atmosphere"),
    ("hopeful", "hopeful and uplifting mood"),
    ("dark", "dark and shadowy atmosphere"),
    ("bright", "bright and illuminated mood"),
    ("glowing", "ethereal glow filling the scene"),
    ("golden", "warm golden light atmosphere"),
)

_ELEMENTS: tuple[tuple[str, str], ...] = (
    # creatures
    ("dragon", "massive dragon with detailed scales"),
    ("wizard", "powerful wizard in flowing robes"),
    ("knight", "armored knight with gleaming armor"),
    ("princess", "elegant princess in royal attire"),
    ("demon", "fearsome demon with dark energy"),
    ("angel", "radiant angel with white wings"),
    ("monster", "terrifying monster with sharp claws"),
    ("ghost", "ethereal ghost with translucent form"),
    # weapons
    ("sword", "legendary sword with intricate design"),
    ("staff", "magical staff glowing with power"),
    ("bow", "elegant elven bow with arrows"),
    ("shield", "protective shield with emblems"),
    ("dagger", "sharp dagger gleaming in light"),
    # magical items
    ("crystal", "glowing magical crystal"),
    ("potion", "bubbling magical potion"),
    ("scroll", "ancient scroll with mystical runes"),
    ("book", "leather-bound spellbook"),
    ("ring", "magical ring with gems"),
    ("crown", "jeweled royal crown"),
    ("amulet", "protective amulet glowing softly"),
    # environment
    ("fire", "roaring flames casting dancing shadows"),
    ("water", "flowing water with reflective surface"),
    ("lightning", "crackling lightning energy"),
    ("portal", "swirling interdimensional portal"),
    ("door", "ornate door with intricate carvings"),
    ("window", "stained glass window with colored light"),
)

_TIME_WEATHER: tuple[tuple[str, str], ...] = (
    ("dawn", "dawn light breaking over horizon"),
    ("morning", "bright morning sunlight"),
    ("noon", "bright midday sun overhead"),
    ("afternoon", "warm afternoon golden light"),
    ("evening", "soft evening twilight"),
    ("night", "dark night with moonlight"),
    ("midnight", "mysterious midnight atmosphere"),
    ("rain", "heavy rain creating atmosphere"),
    ("storm", "dramatic storm with lightning"),
    ("snow", "falling snow creating winter scene"),
    ("fog", "mysterious fog rolling through"),
    ("wind", "strong wind affecting the scene"),
    ("sunshine", "bright warm sunshine"),
    ("cloudy", "overcast cloudy sky"),
)


@dataclass(frozen=True, slots=True)
class CharacterDetails:
    name: str | None = None
    descriptor: str | None = None
    appearance: str | None = None
    profession: str | None = None


@dataclass(frozen=True, slots=True)
class SceneAnalysis:
    setting: str
    action: str
    mood: str
    elements: tuple[str, ...]
    time_weather: str | None


def _first_match(text: str, table: Sequence[tuple[str, str]]) -> str | None:
    for phrase, description in table:
        if phrase in text:
            return description
    return None


def _all_matches(text: str, table: Sequence[tuple[str, str]]) -> tuple[str, ...]:
    return tuple(description for phrase, description in table if phrase in text)


def extract_setting(text: str) -> str:
    for phrase, description in _COMPOUND_SETTINGS:
        if phrase in text or phrase.replace(" ", "") in text:
            return description
    return _first_match(text, _SINGLE_SETTINGS) or DEFAULT_SETTING


def extract_action(text: str) -> str:
    return _first_match(text, _ACTIONS) or DEFAULT_ACTION


def extract_mood(text: str) -> str:
    return _first_match(text, _MOODS) or DEFAULT_MOOD


def extract_elements(text: str) -> tuple[str, ...]:
    return _all_matches(text, _ELEMENTS)


def extract_time_weather(text: str) -> str | None:
    return _first_match(text, _TIME_WEATHER)


def analyze_scene(story_text: str) -> SceneAnalysis:
    text = story_text.lower()
    return SceneAnalysis(
        setting=extract_setting(text),
        action=extract_action(text),
        mood=extract_mood(text),
        elements=extract_elements(text),
        time_weather=extract_time_weather(text),
    )


def _detail(details: CharacterDetails | Mapping[str, object] | None, key: str) -> str:
    if details is None:
        return ""
    if isinstance(details, Mapping):
        value = details.get(key)
        if value is None and key == "descriptor":
            value = details.get("gender")
    else:
        value = getattr(details, key, None)
    return str(value or "").strip()


def synthesize(story_text: object, character_details: CharacterDetails | Mapping[str, object] | None = None) -> str:
    """Build an image-generation prompt from narrative text.

    Pure and deterministic: the same text and character details always give
    the same prompt. Each axis (setting, action, mood, elements, time/weather)
    is classified independently from ordered phrase tables.
    """
    if not isinstance(story_text, str) or not story_text.strip():
        return EMPTY_TEXT_SCENE_PROMPT

    descriptor = _detail(character_details, "descriptor") or DEFAULT_DESCRIPTOR
    name = _detail(character_details, "name") or DEFAULT_NAME
    scene = analyze_scene(story_text)

    prompt = f"{descriptor} named {name} {scene.action} in {scene.setting}"
    if scene.elements:
        prompt += f", {', '.join(scene.elements[:MAX_PROMPT_ELEMENTS])} visible"
    if scene.time_weather:
        prompt += f", {scene.time_weather}"
    return f"{prompt}, {scene.mood}, {PROMPT_STYLE_SUFFIX}"


def build_character_details(
    answers: Mapping[str, str] | None,
    questions: Sequence[CustomizationQuestion] | None,
) -> CharacterDetails:
    if not answers or not questions:
        return CharacterDetails()

    found: dict[str, str] = {}
    for index, question in enumerate(questions):
        answer = str(answers.get(str(index)) or "").strip()
        if not answer:
            continue
        question_text = question.question.lower()
        answer_lower = answer.lower()
        if "name" in question_text:
            found["name"] = answer
        if "gender" in question_text or "male" in answer_lower or "female" in answer_lower:
            found["descriptor"] = answer_lower
        if "appearance" in question_text or "look" in question_text:
            found["appearance"] = answer
        if "profession" in question_text or "job" in question_text:
            found["profession"] = answer
    return CharacterDetails(**found)
