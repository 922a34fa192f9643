"""
Этот пакет содержит:
- загрузку выгрузок (CSV/XLSX) в строки-словари
- нормализацию имён агентов и алиасы
- распознавание раскладки листа (delivery summary / по отправлениям / pickup)
- классификацию статусов и свёртку в сводки по агентам
- значки, историю по дням и слияние агентов задним числом
- экспорт отчётов
"""
from .ingest import load_tables_from_uploads
from .names import canonicalize, resolve_alias, upsert_alias, find_similar_identities
from .schema import detect_schema, detect_layout
from .classify import classify_delivery_status, classify_pickup_row
from .aggregate import process_sheet, merge_delivery_shards, merge_pickup_shards
from .badges import evaluate_badges
from .merge import IdentityMergeEngine
from .store import JsonStore
from .history import build_history_record, agent_directory, deliveries_needed, retention_cutoff
from .narrative import build_performance_prompt, generate_narrative
from .export import export_to_excel_bytes
from .errors import EmptySheetError, StoreUnavailableError, PartialMergeFailure

__all__ = [
    "load_tables_from_uploads",
    "canonicalize",
    "resolve_alias",
    "upsert_alias",
    "find_similar_identities",
    "detect_schema",
    "detect_layout",
    "classify_delivery_status",
    "classify_pickup_row",
    "process_sheet",
    "merge_delivery_shards",
    "merge_pickup_shards",
    "evaluate_badges",
    "IdentityMergeEngine",
    "JsonStore",
    "build_history_record",
    "agent_directory",
    "deliveries_needed",
    "retention_cutoff",
    "build_performance_prompt",
    "generate_narrative",
    "export_to_excel_bytes",
    "EmptySheetError",
    "StoreUnavailableError",
    "PartialMergeFailure",
]
