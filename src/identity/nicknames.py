"""Common English given-name nicknames.

Each group lists a formal name followed by its usual short forms.
Two names are nickname-equivalent if they share a group.
"""

NICKNAME_GROUPS: tuple[tuple[str, ...], ...] = (
    ("robert", "bob", "bobby", "rob", "robbie", "bert"),
    ("william", "bill", "billy", "will", "willie", "liam"),
    ("richard", "rick", "ricky", "dick", "rich"),
    ("james", "jim", "jimmy", "jamie"),
    ("john", "jack", "johnny", "jon"),
    ("jonathan", "jon", "jonny", "nathan"),
    ("michael", "mike", "mikey", "mick"),
    ("thomas", "tom", "tommy"),
    ("joseph", "joe", "joey"),
    ("charles", "charlie", "chuck", "chas"),
    ("christopher", "chris", "topher"),
    ("daniel", "dan", "danny"),
    ("david", "dave", "davey"),
    ("edward", "ed", "eddie", "ted", "ned"),
    ("anthony", "tony"),
    ("andrew", "andy", "drew"),
    ("matthew", "matt", "matty"),
    ("nicholas", "nick", "nicky"),
    ("steven", "steve", "stevie"),
    ("stephen", "steve", "stevie"),
    ("timothy", "tim", "timmy"),
    ("benjamin", "ben", "benny"),
    ("samuel", "sam", "sammy"),
    ("alexander", "alex", "al", "xander"),
    ("gregory", "greg"),
    ("kenneth", "ken", "kenny"),
    ("ronald", "ron", "ronnie"),
    ("donald", "don", "donnie"),
    ("lawrence", "larry"),
    ("gerald", "jerry"),
    ("peter", "pete"),
    ("patrick", "pat"),
    ("raymond", "ray"),
    ("frederick", "fred", "freddie"),
    ("zachary", "zach", "zack"),
    ("elizabeth", "liz", "beth", "betty", "eliza", "lizzie", "betsy"),
    ("margaret", "maggie", "meg", "peggy", "marge"),
    ("katherine", "kate", "katie", "kathy", "kat"),
    ("catherine", "cathy", "cate", "katie"),
    ("jennifer", "jen", "jenny"),
    ("patricia", "pat", "patty", "trish"),
    ("susan", "sue", "susie"),
    ("deborah", "deb", "debbie"),
    ("rebecca", "becky", "becca"),
    ("jessica", "jess", "jessie"),
    ("victoria", "vicky", "tori"),
    ("christine", "chris", "chrissy", "tina"),
    ("kimberly", "kim"),
    ("abigail", "abby"),
    ("samantha", "sam", "sammy"),
    ("alexandra", "alex", "lexi", "sandra"),
    ("barbara", "barb", "barbie"),
    ("dorothy", "dot", "dottie"),
    ("pamela", "pam"),
    ("cynthia", "cindy"),
    ("judith", "judy"),
    ("theresa", "terry", "tess"),
)


def _build_index() -> dict[str, frozenset[int]]:
    index: dict[str, set[int]] = {}
    for group_id, names in enumerate(NICKNAME_GROUPS):
        for name in names:
            index.setdefault(name, set()).add(group_id)
    return {name: frozenset(groups) for name, groups in index.items()}


_INDEX = _build_index()


def name_variants(name: str) -> set[str]:
    """All names sharing a nickname group with the given name (lowercase)."""
    key = name.strip().lower()
    variants = {key}
    for group_id in _INDEX.get(key, ()):
        variants.update(NICKNAME_GROUPS[group_id])
    return variants


def are_nicknames(first: str, second: str) -> bool:
    """Check whether two given names are known variants of each other.

    Args:
        first: Given name (any case)
        second: Given name (any case)

    Returns:
        True if both names appear in a shared nickname group
    """
    a = _INDEX.get(first.strip().lower())
    b = _INDEX.get(second.strip().lower())
    if not a or not b:
        return False
    return not a.isdisjoint(b)
