from stylepass import errors


def test_capture_errors_carry_user_messages():
    assert errors.CaptureError("x").user_message == "Could not start the screen capture."
    assert errors.CaptureUnsupportedError("no ffmpeg").user_message == (
        "Screen capture is not supported in this environment."
    )
    assert errors.CaptureDeviceNotFoundError("no :1").user_message == "No recording device was found."
    permission = errors.CapturePermissionError("denied")
    assert "Please allow screen recording" in permission.user_message
    assert str(permission) == "denied"


def test_hierarchy():
    assert issubclass(errors.CapturePermissionError, errors.CaptureError)
    assert issubclass(errors.CaptureBusyError, errors.CaptureError)
    assert issubclass(errors.CaptureCancelledError, errors.CaptureError)
    assert issubclass(errors.PassportSchemaError, errors.AnalysisError)
    assert issubclass(errors.EmptyMediaError, errors.AnalysisError)
    assert issubclass(errors.AnalysisError, errors.StudioError)
    assert not errors.StudioError.recoverable


def test_schema_error_hides_raw_detail():
    cause = ValueError("bad")
    exc = errors.PassportSchemaError("Invalid style passport: ...", "{raw", cause)
    assert exc.raw_text == "{raw"
    assert exc.cause is cause
    assert exc.user_message == "Analysis failed: the model returned an invalid result."


def test_analysis_error_defaults_user_message_to_message():
    assert errors.AnalysisError("quota exceeded").user_message == "quota exceeded"
    assert errors.EmptyMediaError().user_message == "No media data to analyse."
