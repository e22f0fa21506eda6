####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = ['date2str', 'iso2str']

####################################################################################################

from datetime import datetime

from dateutil import tz
from dateutil.parser import isoparse

####################################################################################################

UTC_ZONE = tz.tzutc()
LOCAL_ZONE = tz.tzlocal()

####################################################################################################

def date2str(date: datetime, local: bool = True) -> str:
    if local:
        _ = LOCAL_ZONE
    else:
        _ = UTC_ZONE
    if date.tzinfo is None:
        date = date.replace(tzinfo=UTC_ZONE)
    _ = date.astimezone(_)
    return _.strftime('%Y/%m/%d %H:%M:%S')

####################################################################################################

def iso2str(value: str, local: bool = True) -> str:
    """Format an ISO 8601 timestamp of the API, return it unchanged if it doesn't parse"""
    if not value:
        return ''
    try:
        return date2str(isoparse(value), local)
    except ValueError:
        return value
