# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0
