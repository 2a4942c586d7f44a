from flask import Blueprint, request, jsonify
from scheduling.errors import SchedulingError
from scheduling.services.public_booking_service import PublicBookingService
from scheduling.utils.logger import get_logger

bp = Blueprint('public_bookings', __name__)
logger = get_logger(__name__)
public_service = PublicBookingService()


def error_response(error: SchedulingError):
    return jsonify(error.to_dict()), error.status_code


@bp.route('/<booking_slug>', methods=['GET'])
def list_event_types(booking_slug):
    """List a provider's bookable event types"""
    try:
        return jsonify(public_service.list_event_types(booking_slug)), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error listing event types: {str(e)}")
        return jsonify({'error': 'Failed to list event types'}), 500


@bp.route('/<booking_slug>/<event_slug>/slots', methods=['GET'])
def get_available_slots(booking_slug, event_slug):
    """Open slots for a date range"""
    try:
        start_date = request.args.get('start_date')
        if not start_date:
            return jsonify({'error': 'start_date is required'}), 400

        result = public_service.get_available_slots(
            booking_slug,
            event_slug,
            start_date,
            request.args.get('end_date'),
            request.args.get('timezone'),
        )
        return jsonify(result), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error getting available slots: {str(e)}")
        return jsonify({'error': 'Failed to get available slots'}), 500


@bp.route('/<booking_slug>/<event_slug>/bookings', methods=['POST'])
def create_booking(booking_slug, event_slug):
    """Book a slot"""
    try:
        data = request.get_json(silent=True) or {}

        required_fields = ['start_time', 'client']
        for field in required_fields:
            if field not in data:
                return jsonify({'error': f'{field} is required'}), 400

        booking = public_service.create_booking(booking_slug, event_slug, data)
        return jsonify({
            'message': 'Booking confirmed',
            'booking': booking
        }), 201
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error creating booking: {str(e)}")
        return jsonify({'error': 'Failed to create booking'}), 500


@bp.route('/bookings/<uid>', methods=['GET'])
def get_booking(uid):
    try:
        return jsonify(public_service.get_booking(uid)), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error getting booking: {str(e)}")
        return jsonify({'error': 'Failed to get booking'}), 500


@bp.route('/bookings/cancel/<token>', methods=['GET'])
def show_cancellation(token):
    """Booking behind a cancel link and whether it may still be cancelled"""
    try:
        return jsonify(public_service.get_booking_for_token(token, 'cancel')), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error loading booking for cancellation: {str(e)}")
        return jsonify({'error': 'Failed to get booking'}), 500


@bp.route('/bookings/cancel/<token>', methods=['POST'])
def cancel_booking(token):
    try:
        data = request.get_json(silent=True) or {}
        booking = public_service.cancel_booking(token, data.get('reason'))
        return jsonify({
            'message': 'Booking cancelled',
            'booking': booking
        }), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error cancelling booking: {str(e)}")
        return jsonify({'error': 'Failed to cancel booking'}), 500


@bp.route('/bookings/reschedule/<token>', methods=['GET'])
def show_reschedule(token):
    try:
        return jsonify(public_service.get_booking_for_token(token, 'reschedule')), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error loading booking for reschedule: {str(e)}")
        return jsonify({'error': 'Failed to get booking'}), 500


@bp.route('/bookings/reschedule/<token>', methods=['POST'])
def reschedule_booking(token):
    try:
        data = request.get_json(silent=True) or {}
        if 'start_time' not in data:
            return jsonify({'error': 'start_time is required'}), 400

        booking = public_service.reschedule_booking(token, data['start_time'], data.get('reason'))
        return jsonify({
            'message': 'Booking rescheduled',
            'booking': booking
        }), 200
    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error rescheduling booking: {str(e)}")
        return jsonify({'error': 'Failed to reschedule booking'}), 500
