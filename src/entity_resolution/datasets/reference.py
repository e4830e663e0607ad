from __future__ import annotations

import random
from dataclasses import dataclass

from entity_resolution.datasets.profiles import PEOPLE_COLUMNS
from entity_resolution.models import Record

_FIRST_NAMES = [
    "Dominique",
    "Luke",
    "Alex",
    "Sofia",
    "Maya",
    "Daniel",
    "Emma",
    "Chris",
    "Olivia",
    "Noah",
    "John",
    "Katherine",
]
_LAST_NAMES = [
    "Smith",
    "Johnson",
    "Brown",
    "Taylor",
    "Wilson",
    "Davies",
    "Martin",
    "Thomas",
    "Robinson",
    "Clarke",
]
_STREETS = [
    "Luke Street",
    "Maple Road",
    "King Avenue",
    "River Lane",
    "Elm Street",
    "Station Road",
    "North Park Drive",
]
_CITIES = ["London", "Manchester", "Leeds", "Bristol", "Birmingham", "Dublin"]
_DOMAINS = ["gmail.com", "outlook.com", "yahoo.com", "example.com"]
_NICKNAMES = {"alex": "Alexander", "chris": "Christopher", "daniel": "Dan", "john": "Johnny", "katherine": "Kate"}


@dataclass
class ReferencePair:
    """Source and target populations plus the (source_id, target_id) pairs that truly match."""

    source: list[Record]
    target: list[Record]
    true_matches: list[tuple[str, str]]


class ReferenceDatasetGenerator:
    """Generate synthetic people records with perturbed cross-population duplicates."""

    def __init__(self, seed: int = 7) -> None:
        self._rng = random.Random(seed)

    def generate_pair(self, size: int, overlap_rate: float = 0.3) -> ReferencePair:
        """``size`` source records, and a target of the same size where
        ``overlap_rate`` of the rows are perturbed copies of source rows."""
        if size <= 0:
            return ReferencePair(source=[], target=[], true_matches=[])
        if not 0.0 <= overlap_rate <= 1.0:
            raise ValueError("overlap_rate must be in [0, 1]")

        source = [Record(record_id=f"src_{i:07d}", attributes=self._profile(i)) for i in range(size)]

        overlap = int(size * overlap_rate)
        originals = self._rng.sample(source, overlap)
        target: list[Record] = []
        true_matches: list[tuple[str, str]] = []
        for original in originals:
            record_id = f"tgt_{len(target):07d}"
            attrs = dict(original.attributes)
            self._perturb(attrs)
            target.append(Record(record_id=record_id, attributes=attrs))
            true_matches.append((original.record_id, record_id))

        while len(target) < size:
            idx = size + len(target)
            target.append(Record(record_id=f"tgt_{len(target):07d}", attributes=self._profile(idx)))

        self._rng.shuffle(target)
        return ReferencePair(source=source, target=target, true_matches=true_matches)

    def _profile(self, idx: int) -> dict[str, str]:
        first_name = self._rng.choice(_FIRST_NAMES)
        last_name = self._rng.choice(_LAST_NAMES)
        street = self._rng.choice(_STREETS)
        email_local = f"{first_name}.{last_name}{idx % 97}".lower()
        dob = f"{1950 + self._rng.randrange(50)}-{self._rng.randrange(12) + 1:02d}-{self._rng.randrange(28) + 1:02d}"
        profile = {
            "FIRST_NAME": first_name,
            "LAST_NAME": last_name,
            "EMAIL": f"{email_local}@{self._rng.choice(_DOMAINS)}",
            "PHONE": f"07{self._rng.randrange(10**9):09d}",
            "DOB": dob,
            "ADDRESS": f"{1 + (idx % 180)} {street}",
            "CITY": self._rng.choice(_CITIES),
            "POSTAL_CODE": f"{10000 + self._rng.randrange(89999)}",
            "COUNTRY": self._rng.choice(["GB", "US", "IE"]),
        }
        return {column: profile[column] for column in PEOPLE_COLUMNS}

    def _perturb(self, attrs: dict[str, str]) -> None:
        mutation = self._rng.choice(["email", "name", "address", "phone", "mixed"])

        if mutation in {"email", "mixed"}:
            attrs["EMAIL"] = self._email_variant(attrs["EMAIL"])
        if mutation in {"name", "mixed"}:
            self._name_variant(attrs)
        if mutation in {"address", "mixed"}:
            attrs["ADDRESS"] = self._address_variant(attrs["ADDRESS"])
        if mutation == "phone":
            digits = attrs["PHONE"]
            attrs["PHONE"] = f"{digits[:5]} {digits[5:8]} {digits[8:]}"

    def _email_variant(self, email: str) -> str:
        local, domain = email.split("@", maxsplit=1)
        variant = self._rng.choice(["plus", "dot", "case"])

        if variant == "plus":
            suffix = self._rng.choice(["test", "shop", "vip"])
            return f"{local}+{suffix}@{domain}"
        if variant == "dot" and len(local) > 3:
            insert_at = max(1, len(local) // 2)
            return f"{local[:insert_at]}.{local[insert_at:]}@{domain}"
        return f"{local.capitalize()}@{domain.upper()}"

    def _name_variant(self, attrs: dict[str, str]) -> None:
        first = attrs["FIRST_NAME"].strip()
        nickname = _NICKNAMES.get(first.lower())
        if nickname is not None:
            attrs["FIRST_NAME"] = nickname
        elif len(first) > 4:
            attrs["FIRST_NAME"] = first[:-1]

        last = attrs["LAST_NAME"].strip()
        attrs["LAST_NAME"] = self._rng.choice([last.upper(), last.lower(), last[:-1] if len(last) > 4 else last])

    def _address_variant(self, address: str) -> str:
        if "Street" in address:
            variant = address.replace("Street", "St")
        elif "Road" in address:
            variant = address.replace("Road", "Rd.")
        else:
            variant = address.lower()
        if self._rng.random() < 0.4:
            variant = f"{variant}, Apt {self._rng.randrange(1, 20)}"
        return variant
