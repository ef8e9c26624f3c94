"""
api/routes/v1/languages.py -- The supported language catalogue.

Public: the editor needs the list to render its language picker before the
user has signed in.
"""

from fastapi import APIRouter

from api.models import LanguageInfo
from core.languages import SUPPORTED_LANGUAGES

router = APIRouter()


@router.get("/languages", response_model=list[LanguageInfo])
async def list_languages() -> list[LanguageInfo]:
    return [LanguageInfo(value=value, label=label) for value, label in SUPPORTED_LANGUAGES]
