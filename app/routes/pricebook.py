import json
import logging
from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request, send_file

from services.database import DatabaseError, DocumentStore
from services.data_processing import to_bool
from services.excel import read_uploaded_sheets
from services.exceptions import DataProcessingError, UploadValidationError
from services.pricebook.exporter import ExportOptions, PricebookExporter, generate_template
from services.pricebook.fields import DestinationField, FieldAutoMapper, FieldMappingSession
from services.pricebook.hierarchy import HierarchyMode
from services.pricebook.importer import CATEGORIES_SHEET, PricebookImporter, import_categories
from services.pricebook.model import CategoryType, Priority
from services.pricebook.pricing import MarkupMode
from services.pricebook.repository import PricebookRepository
from services.pricebook.selection import CategorySelection


pricebook_bp = Blueprint("pricebook", __name__, url_prefix="/pricebook")

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _settings():
    return current_app.config.get("pricebook") or {}


def _repository():
    return PricebookRepository(DocumentStore(g.db), _settings())


def _uploaded_sheets():
    upload = request.files.get("file")
    if upload is None or upload.filename == "":
        raise UploadValidationError("No file uploaded")
    return read_uploaded_sheets(upload, upload.filename)


def _max_levels():
    return int(_settings().get("max_category_levels", 10))


@pricebook_bp.errorhandler(UploadValidationError)
@pricebook_bp.errorhandler(DataProcessingError)
def handle_bad_input(error):
    logger.warning(f"Rejected pricebook request: {error.message}")
    return jsonify({"error": error.message}), 400


@pricebook_bp.errorhandler(DatabaseError)
def handle_database_error(error):
    logger.error(f"Pricebook database error: {error}")
    return jsonify({"error": "Database error"}), 500


# --- categories ----------------------------------------------------------------

@pricebook_bp.route("/categories/import", methods=["POST"])
def import_categories_route():
    sheets = _uploaded_sheets()
    sheet_name = request.form.get("sheet") or (CATEGORIES_SHEET if CATEGORIES_SHEET in sheets else next(iter(sheets)))
    if sheet_name not in sheets:
        raise UploadValidationError(f"Sheet '{sheet_name}' not found in the upload")

    mode = request.form.get("mode") or None
    if mode and mode not in {m.value for m in HierarchyMode}:
        raise UploadValidationError(f"Unknown hierarchy mode '{mode}'")

    headers, rows = sheets[sheet_name]
    nodes, result = import_categories(
        headers, rows,
        mode=HierarchyMode(mode) if mode else None,
        max_levels=_max_levels(),
        default_type=CategoryType.parse(request.form.get("type")),
    )
    repository = _repository()
    saved = repository.save_import(result)
    return jsonify({
        "imported": saved,
        "warnings": result.warnings,
        "errors": result.errors,
        "lastImport": repository.last_import("categories"),
    })


@pricebook_bp.route("/categories", methods=["GET"])
def list_categories():
    """Tree view state: visible roots, optional search hits, and tags for a selection."""
    tree = _repository().tree()
    type_filter = request.args.get("type")
    selected = [s for s in (request.args.get("selected") or "").split(",") if s]
    selection = CategorySelection(
        tree,
        selected=selected,
        type_filter=CategoryType.parse(type_filter) if type_filter else None,
    )

    payload = {
        "roots": selection.visible_roots(),
        "categories": [dict(node.to_document(), pathLabel=tree.path_label(node.id)) for node in tree],
        "selected": selection.selected,
        "tags": [{"id": i, "label": selection.path_label(i)} for i in selection.display_tags()],
        "expanded": sorted(selection.expanded),
    }
    if request.args.get("q"):
        payload["matches"] = selection.search(request.args["q"])
    return jsonify(payload)


@pricebook_bp.route("/categories", methods=["POST"])
def create_category():
    data = request.get_json(silent=True) or {}
    node = _repository().create_category(
        name=data.get("name"),
        parent_id=data.get("parentId"),
        category_type=CategoryType.parse(data.get("type")),
        description=data.get("description") or "",
    )
    return jsonify(node.to_document()), 201


@pricebook_bp.route("/categories/<string:category_id>", methods=["PATCH"])
def update_category(category_id):
    data = request.get_json(silent=True) or {}
    changes = {}
    if "description" in data:
        changes["description"] = data["description"] or ""
    if "active" in data:
        changes["active"] = to_bool(data["active"], default=True)
    node = _repository().update_category(
        category_id,
        name=data.get("name"),
        parent_id=data["parentId"] if "parentId" in data else "",
        **changes,
    )
    return jsonify(node.to_document())


@pricebook_bp.route("/categories/<string:category_id>", methods=["DELETE"])
def delete_category(category_id):
    repository = _repository()
    if repository.store.get("categories", category_id) is None:
        return jsonify({"error": f"Category '{category_id}' not found"}), 404
    relinked = repository.delete_category(category_id)
    return jsonify({"deleted": category_id, "relinked": relinked})


# --- field mapping and item import ---------------------------------------------

@pricebook_bp.route("/automap", methods=["POST"])
def automap():
    """Propose a header mapping, either for an uploaded file (per sheet) or a JSON header list."""
    mapper = FieldAutoMapper.from_settings(_settings())
    if "file" in request.files:
        header_sets = {name: headers for name, (headers, _) in _uploaded_sheets().items()}
    else:
        data = request.get_json(silent=True) or {}
        header_sets = {data.get("sheet") or "Sheet1": data.get("headers") or []}

    sheets = {}
    for sheet_name, headers in header_sets.items():
        session = FieldMappingSession.from_proposal(mapper.automap(headers))
        sheets[sheet_name] = {
            "mapping": {s: (d.value if d else None) for s, d in session.mapping().items()},
            "conflicts": {d.value: sources for d, sources in session.conflicts().items()},
        }
    return jsonify({"fields": [f.value for f in DestinationField], "sheets": sheets})


def _mapping_from_form():
    """Optional `mapping` form field: {"Sheet": {"Header": "Destination label" | null}}."""
    raw = request.form.get("mapping")
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise UploadValidationError(f"Invalid mapping JSON: {e}")
    if not isinstance(data, dict):
        raise UploadValidationError("Mapping must be a JSON object keyed by sheet name")

    mappings = {}
    for sheet_name, columns in data.items():
        if not isinstance(columns, dict):
            raise UploadValidationError(f"Mapping for sheet '{sheet_name}' must be a JSON object of header to field")
        session = FieldMappingSession(columns.keys())
        for source, label in columns.items():
            dest = DestinationField.from_label(label) if label else None
            if label and dest is None:
                raise UploadValidationError(f"Unknown destination field '{label}'")
            if not session.claim(source, dest):
                raise UploadValidationError(
                    f"'{label}' is mapped from both '{session.holder_of(dest)}' and '{source}' in sheet '{sheet_name}'"
                )
        mappings[sheet_name] = session.mapping()
    return mappings


@pricebook_bp.route("/items/import", methods=["POST"])
def import_items():
    sheets = _uploaded_sheets()
    mappings = _mapping_from_form()
    repository = _repository()

    importer = PricebookImporter(
        categories=repository.category_index(),
        mapper=FieldAutoMapper.from_settings(_settings()),
        max_levels=_max_levels(),
    )
    result = importer.import_workbook(sheets, mappings, default_collection=request.form.get("collection"))
    saved = repository.save_import(result)
    logger.info(f"Pricebook import saved {saved}")
    return jsonify({"imported": saved, "warnings": result.warnings, "errors": result.errors})


# --- export ----------------------------------------------------------------------

@pricebook_bp.route("/export", methods=["GET"])
def export_pricebook():
    store = DocumentStore(g.db)
    options = ExportOptions(
        include_inactive=to_bool(request.args.get("include_inactive")),
        include_metadata=to_bool(request.args.get("include_metadata"), default=True),
        separate_sheets=to_bool(request.args.get("separate_sheets"), default=True),
        detailed=(request.args.get("detail") or "detailed") != "simple",
        business_name=_settings().get("business_name", ""),
    )
    exporter = PricebookExporter(
        categories=store.all("categories"),
        services=store.all("services"),
        materials=store.all("materials"),
        equipment=store.all("equipment"),
        options=options,
    )
    stamp = datetime.now().strftime("%Y-%m-%d")
    if (request.args.get("format") or "xlsx").lower() == "csv":
        return send_file(exporter.to_csv_bytes(), as_attachment=True,
                         download_name=f"pricebook-export-{stamp}.csv", mimetype="text/csv")
    return send_file(exporter.to_xlsx_bytes(), as_attachment=True,
                     download_name=f"pricebook-export-{stamp}.xlsx", mimetype=XLSX_MIMETYPE)


@pricebook_bp.route("/template", methods=["GET"])
def download_template():
    return send_file(generate_template().to_bytes(), as_attachment=True,
                     download_name="pricebook-import-template.xlsx", mimetype=XLSX_MIMETYPE)


# --- pricing -----------------------------------------------------------------------

@pricebook_bp.route("/services/<string:service_id>/price", methods=["GET"])
def service_price(service_id):
    markup = (request.args.get("markup") or MarkupMode.TIERED.value).lower()
    if markup not in {m.value for m in MarkupMode}:
        raise UploadValidationError(f"Unknown markup mode '{markup}'")
    try:
        priority = Priority.parse(request.args.get("priority"))
    except ValueError as e:
        raise UploadValidationError(str(e))

    breakdown = _repository().price_service(
        service_id,
        priority=priority,
        markup_mode=MarkupMode(markup),
    )
    if breakdown is None:
        return jsonify({"error": f"Service '{service_id}' not found"}), 404
    return jsonify(breakdown.to_dict())


@pricebook_bp.route("/price-rules/defaults", methods=["GET"])
def price_rule_defaults():
    return jsonify(_repository().rule_defaults())


@pricebook_bp.route("/price-rules", methods=["POST"])
def save_price_rule():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise UploadValidationError("Expected a JSON price rule")
    rule, warnings = _repository().save_rule(data)
    return jsonify({"rule": rule.to_document(), "warnings": warnings}), 201
