from instashorts.models import CharacterAlignment, WordTimestamp


def characters_to_words(alignment: CharacterAlignment) -> list[WordTimestamp]:
    """Collapse a per-character alignment into word timings.

    A space ends the current word; every other character (punctuation
    included) belongs to it. A word starts at its first character's start and
    ends at its last character's end.
    """
    words: list[WordTimestamp] = []
    current = ""
    start = 0.0
    end = 0.0

    for char, char_start, char_end in zip(
        alignment.characters, alignment.starts, alignment.ends
    ):
        if char == " ":
            if current:
                words.append(WordTimestamp(word=current, start=start, end=end))
                current = ""
            continue

        if not current:
            start = char_start
        current += char
        end = char_end

    if current:
        words.append(WordTimestamp(word=current, start=start, end=end))

    return words
