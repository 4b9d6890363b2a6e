# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Custom exceptions for pdfpreflight."""


class PreflightError(Exception):
    """Base exception for all pdfpreflight errors."""


class ConfigurationError(PreflightError):
    """Invalid preflight configuration."""


class EngineAdapterError(PreflightError):
    """A rendering engine collaborator failed or returned an unusable value."""


class DocumentError(PreflightError):
    """PDF document or page could not be opened."""
