"""
Flask Web Application for the UNIMARC Cataloguing Dialogue

JSON API over the Turn Engine plus the stored records.
The conversation state travels with every request; the server keeps none.
"""

import logging

from flask import Flask, jsonify, request

from unidialog.commands import DEFAULT_LANGUAGE, TurnRequest
from unidialog.core.record_assembler import SerializationError, reassemble
from unidialog.persistence import StorageError

logger = logging.getLogger(__name__)


def create_app(engine, store):
    """
    Build the Flask application.

    Args:
        engine: TurnEngine (or anything with handle_turn(TurnRequest))
        store: RecordStore (get_record, list_records, update_record,
            delete_record, list_authors, get_stats)

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    app.json.ensure_ascii = False

    @app.route('/api/uni-dialog', methods=['POST'])
    def uni_dialog():
        """Process one conversation turn"""
        payload = request.get_json(silent=True)
        if payload is None:
            return jsonify({'type': 'error', 'error': 'Request body must be JSON'}), 400

        try:
            turn_request = TurnRequest.from_json(payload)
        except ValueError as e:
            logger.warning(f"Malformed turn request: {e}")
            body = {'type': 'error', 'error': 'Pedido inválido', 'details': str(e)}
            # Unparseable state goes back untouched
            if isinstance(payload, dict) and payload.get('conversationState') is not None:
                body['conversationState'] = payload['conversationState']
            return jsonify(body), 400

        try:
            response = engine.handle_turn(turn_request)
        except Exception as e:
            logger.error(f"Error processing turn: {e}", exc_info=True)
            return jsonify({'type': 'error', 'error': 'Erro interno do servidor', 'details': str(e)}), 500

        return jsonify(response.to_json()), response.status_code

    @app.route('/api/records', methods=['GET'])
    def list_records():
        """Paginated record list, newest first"""
        try:
            page = int(request.args.get('page', 1))
            limit = int(request.args.get('limit', 20))
            return jsonify(store.list_records(page=page, limit=limit))
        except ValueError as e:
            return jsonify({'error': f"Parâmetros de paginação inválidos: {e}"}), 400
        except Exception as e:
            logger.error(f"Error listing records: {e}")
            return jsonify({'error': 'Erro ao listar registros'}), 500

    @app.route('/api/records/<record_id>', methods=['GET'])
    def get_record(record_id):
        """Fetch one record"""
        try:
            record = store.get_record(record_id)
        except StorageError as e:
            logger.error(f"Error reading record {record_id}: {e}")
            return jsonify({'error': 'Erro ao ler o registro'}), 500

        if record is None:
            return jsonify({'error': 'Registro não encontrado'}), 404
        return jsonify(record)

    @app.route('/api/records/<record_id>', methods=['DELETE'])
    def delete_record(record_id):
        """Delete one record"""
        try:
            deleted = store.delete_record(record_id)
        except StorageError as e:
            logger.error(f"Error deleting record {record_id}: {e}")
            return jsonify({'error': 'Erro ao apagar o registro'}), 500

        if not deleted:
            return jsonify({'error': 'Registro não encontrado'}), 404
        return jsonify({'success': True})

    @app.route('/api/records/<record_id>', methods=['PUT'])
    def update_record(record_id):
        """Replace a record's fields: {filledFields, template, language?}"""
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or not isinstance(payload.get('filledFields'), dict) \
                or not isinstance(payload.get('template'), dict):
            return jsonify({'error': 'filledFields e template são obrigatórios'}), 400

        try:
            filled, text_unimarc, fields = reassemble(
                payload['filledFields'],
                payload['template'],
                payload.get('language') or DEFAULT_LANGUAGE
            )
        except SerializationError as e:
            return jsonify({'error': 'Campos inválidos', 'details': str(e)}), 400

        try:
            record = store.update_record(record_id, {
                'filledFields': filled,
                'textUnimarc': text_unimarc,
                'fields': fields,
            })
        except StorageError as e:
            logger.error(f"Error updating record {record_id}: {e}")
            return jsonify({'error': 'Erro ao atualizar o registro'}), 500

        if record is None:
            return jsonify({'error': 'Registro não encontrado'}), 404
        return jsonify(record)

    @app.route('/api/authors', methods=['GET'])
    def list_authors():
        """People named in stored records, with record counts"""
        try:
            return jsonify(store.list_authors())
        except Exception as e:
            logger.error(f"Error listing authors: {e}")
            return jsonify({'error': 'Erro ao buscar autores', 'details': str(e)}), 500

    @app.route('/api/stats', methods=['GET'])
    def stats():
        """Record totals"""
        try:
            return jsonify(store.get_stats())
        except Exception as e:
            logger.error(f"Error computing stats: {e}")
            return jsonify({'error': 'Erro ao buscar estatísticas'}), 500

    return app


def build_engine(settings):
    """Wire the model-backed collaborators (expensive: loads the model)"""
    from unidialog.core.template_source import TemplateSource
    from unidialog.core.text_generation import CatalogTextGenerator
    from unidialog.core.turn_engine import TurnEngine
    from unidialog.persistence import RecordStore
    from unidialog.utils.hf_client import HuggingFaceClient

    logger.info("Initializing HuggingFace model (this takes ~30 seconds)...")
    hf_client = HuggingFaceClient(
        model_name=settings.model_name,
        load_in_4bit=settings.load_in_4bit,
        device=settings.device
    )

    store = RecordStore(settings.records_dir)
    engine = TurnEngine(
        template_source=TemplateSource(**settings.template_source_kwargs()),
        text_generator=CatalogTextGenerator(
            hf_client,
            serializer=settings.serializer,
            language=settings.default_language
        ),
        storage=store
    )
    return engine, store


if __name__ == '__main__':
    from unidialog.config import settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    engine, store = build_engine(settings)
    app = create_app(engine, store)

    print("\n" + "=" * 60)
    print("UNIMARC CATALOGUING DIALOGUE - WEB API")
    print("=" * 60)
    print(f"\nPOST http://localhost:{settings.port}/api/uni-dialog")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60 + "\n")

    app.run(debug=False, host=settings.host, port=settings.port)
