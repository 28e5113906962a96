"""Board generation for Codenames: word lists and card assignments."""

import random
import re
import logging
from functools import partial
from typing import Callable, List, Optional, Tuple

import config
from roles import Team

logger = logging.getLogger(__name__)

DEFAULT_WORDS = (
    "AFRICA", "AGENT", "AIR", "ALIEN", "AMAZON", "ANGEL", "ANTARCTICA", "APPLE",
    "ARM", "BACK", "BAND", "BANK", "BARK", "BEACH", "BELT", "BERLIN", "BERRY",
    "BOARD", "BOND", "BOOM", "BOW", "BOX", "BRIDGE", "BRUSH", "BUCK", "BUFFALO",
    "BUG", "BUGLE", "BUTTON", "CALF", "CANADA", "CAP", "CAPITAL", "CAR", "CARD",
    "CARROT", "CASINO", "CAST", "CAT", "CELL", "CENTAUR", "CENTER", "CHAIR",
    "CHANGE", "CHARGE", "CHECK", "CHEST", "CHICK", "CHINA", "CHOCOLATE", "CHURCH",
    "CIRCLE", "CLIFF", "CLOAK", "CLUB", "CODE", "COLD", "COMIC", "COMPOUND",
    "CONCERT", "CONDUCTOR", "CONTRACT", "COOK", "COPPER", "COTTON", "COURT",
    "COVER", "CRANE", "CRASH", "CRICKET", "CROSS", "CROWN", "CYCLE", "CZECH",
    "DANCE", "DATE", "DAY", "DEATH", "DECK", "DEGREE", "DIAMOND", "DICE",
    "DINOSAUR", "DISEASE", "DOCTOR", "DOG", "DRAFT", "DRAGON", "DRESS", "DRILL",
    "DROP", "DUCK", "DWARF", "EAGLE", "EGYPT", "ENGINE", "ENGLAND", "EUROPE",
    "EYE", "FACE", "FAIR", "FALL", "FAN", "FENCE", "FIELD", "FIGHTER", "FIGURE",
    "FILE", "FILM", "FIRE", "FISH", "FLUTE", "FLY", "FOOT", "FORCE", "FOREST",
    "FORK", "FRANCE", "GAME", "GAS", "GENIUS", "GERMANY", "GHOST", "GIANT",
    "GLASS", "GLOVE", "GOLD", "GRACE", "GRASS", "GREECE", "GREEN", "GROUND",
    "HAM", "HAND", "HAWK", "HEAD", "HEART", "HELICOPTER", "HIMALAYAS", "HOLE",
    "HOLLYWOOD", "HONEY", "HOOD", "HOOK", "HORN", "HORSE", "HOSPITAL", "HOTEL",
    "ICE", "ICE CREAM", "INDIA", "IRON", "IVORY", "JACK", "JAM", "JET", "JUPITER",
    "KANGAROO", "KETCHUP", "KEY", "KID", "KING", "KIWI", "KNIFE", "KNIGHT",
    "LAB", "LAP", "LASER", "LAWYER", "LEAD", "LEMON", "LEPRECHAUN", "LIFE",
    "LIGHT", "LIMOUSINE", "LINE", "LINK", "LION", "LITTER", "LOCH NESS", "LOCK",
    "LOG", "LONDON", "LUCK", "MAIL", "MAMMOTH", "MAPLE", "MARBLE", "MARCH",
    "MASS", "MATCH", "MERCURY", "MEXICO", "MICROSCOPE", "MILLIONAIRE", "MINE",
    "MINT", "MISSILE", "MODEL", "MOLE", "MOON", "MOSCOW", "MOUNT", "MOUSE",
    "MOUTH", "MUG", "NAIL", "NEEDLE", "NET", "NEW YORK", "NIGHT", "NINJA",
    "NOTE", "NOVEL", "NURSE", "NUT", "OCTOPUS", "OIL", "OLIVE", "OLYMPUS",
    "OPERA", "ORANGE", "ORGAN", "PALM", "PAN", "PANTS", "PAPER", "PARACHUTE",
    "PARK", "PART", "PASS", "PASTE", "PENGUIN", "PHOENIX", "PIANO", "PIE",
    "PILOT", "PIN", "PIPE", "PIRATE", "PISTOL", "PIT", "PITCH", "PLANE",
    "PLASTIC", "PLATE", "PLATYPUS", "PLAY", "PLOT", "POINT", "POISON", "POLE",
    "POLICE", "POOL", "PORT", "POST", "PRESS", "PRINCESS", "PUMPKIN", "PUPIL",
    "PYRAMID", "QUEEN", "RABBIT", "RACKET", "RAY", "REVOLUTION", "RING", "ROBIN",
    "ROBOT", "ROCK", "ROME", "ROOT", "ROSE", "ROULETTE", "ROUND", "ROW", "RULER",
    "SATELLITE", "SATURN", "SCALE", "SCHOOL", "SCIENTIST", "SCORPION", "SCREEN",
    "SCUBA DIVER", "SEAL", "SERVER", "SHADOW", "SHAKESPEARE", "SHARK", "SHIP",
    "SHOE", "SHOP", "SHOT", "SINK", "SKYSCRAPER", "SLIP", "SLUG", "SMUGGLER",
    "SNOW", "SNOWMAN", "SOCK", "SOLDIER", "SOUL", "SOUND", "SPACE", "SPELL",
    "SPIDER", "SPIKE", "SPINE", "SPOT", "SPRING", "SPY", "SQUARE", "STADIUM",
    "STAFF", "STAR", "STATE", "STICK", "STOCK", "STRAW", "STREAM", "STRIKE",
    "STRING", "SUB", "SUIT", "SUPERHERO", "SWING", "SWITCH", "TABLE", "TABLET",
    "TAG", "TAIL", "TAP", "TEACHER", "TELESCOPE", "TEMPLE", "THIEF", "THUMB",
    "TICK", "TIE", "TIME", "TOKYO", "TOOTH", "TORCH", "TOWER", "TRACK", "TRAIN",
    "TRIANGLE", "TRIP", "TRUNK", "TUBE", "TURKEY", "UNDERTAKER", "UNICORN",
    "VACUUM", "VAN", "VET", "WAKE", "WALL", "WAR", "WASHER", "WASHINGTON",
    "WATCH", "WATER", "WAVE", "WEB", "WELL", "WHALE", "WHIP", "WIND", "WITCH",
    "WORM", "YARD",
)

Board = Tuple[List[dict], Team]
BoardFactory = Callable[[], Board]


def _sanitize_word(word: str) -> str:
    """Strip HTML tags and control characters, collapse spaces, uppercase."""
    word = re.sub(r'<[^>]+>', '', word)
    word = re.sub(r'[\x00-\x1f\x7f]', '', word)
    return " ".join(word.split()).upper()


def sanitize_words(words: list) -> List[str]:
    """Clean a custom word list, dropping blanks, overlong entries and duplicates."""
    cleaned: List[str] = []
    seen = set()
    for w in words:
        if not isinstance(w, str):
            continue
        w = _sanitize_word(w)
        if not w or len(w) > config.MAX_WORD_LENGTH or w in seen:
            continue
        seen.add(w)
        cleaned.append(w)
    return cleaned


def generate_board(words: Optional[List[str]] = None,
                   rng: Optional[random.Random] = None) -> Board:
    """Pick BOARD_SIZE words and deal them 9/8/7/1 to starting team, other team,
    bystanders and the assassin."""
    rng = rng or random.Random()
    pool = list(words) if words else list(DEFAULT_WORDS)
    if len(pool) < config.BOARD_SIZE:
        raise ValueError(f"Need at least {config.BOARD_SIZE} words, got {len(pool)}")

    starting_team = rng.choice([Team.RED, Team.BLUE])
    other_team = starting_team.other
    neutral = (config.BOARD_SIZE - config.STARTING_TEAM_CARDS
               - config.OTHER_TEAM_CARDS - config.ASSASSIN_CARDS)
    types = ([starting_team.value] * config.STARTING_TEAM_CARDS
             + [other_team.value] * config.OTHER_TEAM_CARDS
             + ["neutral"] * neutral
             + ["assassin"] * config.ASSASSIN_CARDS)
    rng.shuffle(types)

    chosen = rng.sample(pool, config.BOARD_SIZE)
    cards = [{"word": word, "type": card_type} for word, card_type in zip(chosen, types)]
    logger.debug("Generated board, %s starts", starting_team.value)
    return cards, starting_team


def make_board_factory(words: Optional[List[str]] = None,
                       rng: Optional[random.Random] = None) -> BoardFactory:
    return partial(generate_board, words, rng)
