from typing import Any

YES = "Ha"
NO = "Yo'q"

SAVE_OK = "Ma'lumotlar muvaffaqiyatli saqlandi!"
SAVE_FAILED = "Ma'lumotlarni saqlashda xatolik yuz berdi"
DELETE_FAILED = "Yozuvlarni o'chirishda xatolik yuz berdi"
DELETE_NOTHING = "O'chirish uchun yozuv tanlanmagan"
EXPORT_FAILED = "Excel eksport qilishda xatolik yuz berdi"
IMPORT_FAILED = "Excel import qilishda xatolik yuz berdi"
IMPORT_UNREADABLE = "Excel faylni o'qib bo'lmadi"
UPLOAD_FAILED = "Rasmlarni yuklashda xatolik yuz berdi"
NOT_A_NUMBER = "Raqam kiriting"
UNKNOWN_OPTION = "Ro'yxatda yo'q qiymat"
READONLY_COLUMN = "Bu ustunni tahrirlab bo'lmaydi"
MSHT_INVALID = "MSHT fayl formati noto'g'ri"
SESSION_NOT_FOUND = "Sessiya topilmadi yoki eskirgan"

META_TABLE = "Jadval"
META_EXPORTED = "Eksport vaqti"
META_ROWS = "Yozuvlar soni"
META_COLUMNS = "Ustunlar soni"
META_COLUMN = "Ustun"
META_TYPE = "Turi"
META_SUMMARY = "Xulosa"


def image_count(n: int) -> str:
    return f"{n} ta rasm"


def deleted(n: int) -> str:
    return f"{n} ta yozuv o'chirildi"


def imported(n: int) -> str:
    return f"{n} ta yozuv import qilindi"


def confirm_delete(n: int) -> str:
    return f"{n} ta yozuvni o'chirishni tasdiqlaysizmi?"


def import_missing_column(label: str) -> str:
    return f"«{label}» ustuni topilmadi, standart qiymat qo'yildi"


def import_bad_value(label: str, raw: Any) -> str:
    return f"«{label}»: «{raw}» qiymatini o'qib bo'lmadi, standart qiymat qo'yildi"
