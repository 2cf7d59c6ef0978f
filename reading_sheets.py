from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Union

from models import ReadingSheetType


@dataclass(frozen=True)
class SheetField:
    id: str
    label: str
    helper: Optional[str] = None
    type: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ESSAI_FIELDS: List[SheetField] = [
    SheetField("pourquoi_lu", "Pourquoi j’ai lu ce livre", "Contexte perso, pro, intellectuel."),
    SheetField("probleme_traite", "Problème traité", "La question centrale que l’auteur adresse."),
    SheetField(
        "these_auteur",
        "Thèse / position de l’auteur",
        "Ce qu’il défend réellement (pas le résumé marketing).",
    ),
    SheetField("idees_cles", "Idées ou concepts clés", "3 à 5 max, nommés clairement."),
    SheetField("resume_structure", "Résumé structuré", "Comment l’argumentation se déroule."),
    SheetField("ce_que_je_garde", "Ce que je garde", "Ce que tu intègres à ta pensée."),
    SheetField(
        "ce_que_je_conteste",
        "Ce que je conteste / nuance",
        "Limites, angles morts, désaccords.",
    ),
    SheetField("questions_ouvertes", "Questions ouvertes", "Ce que le livre laisse irrésolu."),
    SheetField("note_globale", "Note globale", "Sur 5.", type="rating"),
    SheetField("recommandation", "Recommandation", "À qui, dans quel contexte."),
]

ROMAN_FIELDS: List[SheetField] = [
    SheetField(
        "pourquoi_choisi",
        "Pourquoi j’ai choisi ce livre",
        "Hasard, conseil, envie précise, moment de vie.",
    ),
    SheetField(
        "resume_sans_spoiler",
        "Résumé sans spoiler",
        "L’essentiel de l’intrigue, sans trahir l’expérience.",
    ),
    SheetField(
        "themes_principaux",
        "Thèmes principaux",
        "Ce dont le livre parle vraiment (au-delà de l’histoire).",
    ),
    SheetField("personnages_marquants", "Personnages marquants", "Un ou deux, pas une liste Wikipédia."),
    SheetField("atmosphere_ton", "Atmosphère / ton", "Ce que le livre dégage : rythme, ambiance, style."),
    SheetField("ce_qui_ma_touche", "Ce qui m’a touchée", "Scènes, émotions, résonances personnelles."),
    SheetField(
        "ce_qui_ma_moins_convaincue",
        "Ce qui m’a moins convaincue",
        "Longueurs, choix narratifs, style, fin, etc.",
    ),
    SheetField("images_ou_idees", "Images ou idées qui restent", "Ce qui continue de vivre après la lecture."),
    SheetField("relire_pourquoi", "Est-ce que je le relirais ?", "Pourquoi / quand."),
]

LIBRE_FIELDS: List[SheetField] = [
    SheetField("notes_libres", "Notes libres", "Tout ce que tu veux garder de cette lecture."),
]

_FIELDS_BY_TYPE = {
    ReadingSheetType.ESSAI: ESSAI_FIELDS,
    ReadingSheetType.ROMAN_HISTOIRE: ROMAN_FIELDS,
    ReadingSheetType.LIBRE: LIBRE_FIELDS,
}

_LABELS = {
    ReadingSheetType.ESSAI: "Essai",
    ReadingSheetType.ROMAN_HISTOIRE: "Roman / Histoire",
    ReadingSheetType.LIBRE: "Fiche libre",
}


def _as_type(sheet_type: Union[str, ReadingSheetType]) -> ReadingSheetType:
    try:
        return ReadingSheetType(sheet_type)
    except ValueError:
        return ReadingSheetType.LIBRE


def get_fields_for_type(sheet_type: Union[str, ReadingSheetType]) -> List[SheetField]:
    return list(_FIELDS_BY_TYPE[_as_type(sheet_type)])


def get_sheet_label(sheet_type: Union[str, ReadingSheetType]) -> str:
    return _LABELS[_as_type(sheet_type)]


def empty_responses(sheet_type: Union[str, ReadingSheetType]) -> Dict[str, str]:
    """Blank answer for every field of the template, ready to be filled in."""
    return {sheet_field.id: "" for sheet_field in get_fields_for_type(sheet_type)}


def describe_template(sheet_type: Union[str, ReadingSheetType]) -> Dict[str, Any]:
    """JSON-ready template: label, fields and a blank set of responses."""
    resolved = _as_type(sheet_type)
    return {
        "type": resolved.value,
        "label": get_sheet_label(resolved),
        "fields": [sheet_field.to_dict() for sheet_field in get_fields_for_type(resolved)],
        "responses": empty_responses(resolved),
    }


def describe_templates() -> List[Dict[str, Any]]:
    return [describe_template(sheet_type) for sheet_type in ReadingSheetType]
