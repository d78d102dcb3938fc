"""PowerShell script builders for the backup control plane.

Every builder returns a script body that prints its result as a frame
(see ``vscan.gateway.framing``); :func:`wrap_script` adds the error handler
that turns any terminating error into a ``success: false`` frame.
"""

from __future__ import annotations

from collections.abc import Iterable

SESSION_NOT_FOUND = "session_not_found"


def ps_quote(value: str) -> str:
    """Quote *value* as a PowerShell single-quoted literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_array(values: Iterable[str]) -> str:
    return "@(" + ",".join(ps_quote(v) for v in values) + ")"


def _emit(expression: str, depth: int = 10) -> str:
    return (
        'Write-Output "STARTJSON"\n'
        f"{expression} | ConvertTo-Json -Depth {depth} -Compress\n"
        'Write-Output "ENDJSON"'
    )


def wrap_script(body: str) -> str:
    return (
        '$ErrorActionPreference = "Stop"\n'
        '$ProgressPreference = "SilentlyContinue"\n'
        "try {\n"
        f"{body}\n"
        "} catch {\n"
        + _emit(
            "@{ success = $false; error = $_.Exception.Message; details = @{ "
            "errorType = $_.Exception.GetType().Name; stack = $_.ScriptStackTrace } }",
            depth=5,
        )
        + "\n}"
    )


def connect_script(server: str, port: int, username: str, password: str) -> str:
    return f"""
$securePassword = ConvertTo-SecureString {ps_quote(password)} -AsPlainText -Force
$credential = New-Object System.Management.Automation.PSCredential ({ps_quote(username)}, $securePassword)
if (-not (Get-Module -Name Veeam.Backup.PowerShell)) {{
    Import-Module Veeam.Backup.PowerShell -WarningAction SilentlyContinue
}}
Connect-VBRServer -Server {ps_quote(server)} -Port {int(port)} -Credential $credential
$session = Get-VBRServerSession
if (-not $session) {{ throw "Failed to establish control-plane session" }}
$info = Get-VBRBackupServerInfo
$build = $null
if ($info.Build) {{ $build = $info.Build.ToString() }}
{_emit("@{ success = $true; data = @{ server = $session.Server; user = $session.User; name = $info.Name; version = $build; patchLevel = $info.PatchLevel } }")}
"""


def probe_script() -> str:
    return f"""
$session = Get-VBRServerSession
if (-not $session) {{ throw "No active control-plane session" }}
{_emit("@{ success = $true; data = @{ server = $session.Server } }")}
"""


def disconnect_script() -> str:
    return f"""
Disconnect-VBRServer
{_emit("@{ success = $true; data = $null }")}
"""


def publish_script(restore_point_id: str, target_server: str, disk_names: list[str], reason: str) -> str:
    disks_clause = f"    DiskNames = {ps_array(disk_names)}\n" if disk_names else ""
    return f"""
$restorePoint = Get-VBRRestorePoint -Id {ps_quote(restore_point_id)}
if (-not $restorePoint) {{ throw ("Restore point not found: " + {ps_quote(restore_point_id)}) }}
$server = Get-VBRServer -Name {ps_quote(target_server)}
if (-not $server) {{ throw ("Target server not found: " + {ps_quote(target_server)}) }}
$credentials = Get-VBRCredentials -Entity $server
if (-not $credentials) {{ throw ("No credentials registered for " + {ps_quote(target_server)}) }}
$publishOptions = @{{
    RestorePoint = $restorePoint
    TargetServerName = {ps_quote(target_server)}
    TargetServerCredentials = $credentials
    EnableFUSEProtocol = $true
    Reason = {ps_quote(reason)}
{disks_clause}}}
$session = Publish-VBRBackupContent @publishOptions
if (-not $session) {{ throw "Publish returned no session" }}
{_emit("@{ success = $true; data = @{ sessionId = $session.Id.ToString(); itemName = $restorePoint.Name } }")}
"""


def verify_script(session_id: str) -> str:
    """Report every disk of a published session with all of its mount points.

    Mount point filtering happens on the caller side so rejected paths can be logged.
    """
    return f"""
$session = Get-VBRPublishedBackupContentSession -Id {ps_quote(session_id)}
if (-not $session) {{ throw ("Session not found: " + {ps_quote(session_id)}) }}
$contentInfo = Get-VBRPublishedBackupContentInfo -Session $session
if (-not $contentInfo) {{ throw ("No content info available for session " + {ps_quote(session_id)}) }}
$disks = @()
foreach ($disk in $contentInfo.Disks) {{
    $disks += @{{ diskName = $disk.DiskName; mountPoints = @($disk.MountPoints | ForEach-Object {{ [string]$_ }}) }}
}}
{_emit("@{ success = $true; data = @{ sessionId = " + ps_quote(session_id) + "; disks = $disks } }")}
"""


def unpublish_script(session_id: str) -> str:
    missing = (
        "@{ success = $false; error = "
        + ps_quote(f"Session not found: {session_id}")
        + f"; details = @{{ code = {ps_quote(SESSION_NOT_FOUND)} }} }}"
    )
    return f"""
$session = Get-VBRPublishedBackupContentSession -Id {ps_quote(session_id)} -ErrorAction SilentlyContinue
if (-not $session) {{
{_emit(missing, depth=5)}
}} else {{
    Unpublish-VBRBackupContent -Session $session
{_emit("@{ success = $true; data = @{ sessionId = " + ps_quote(session_id) + " } }")}
}}
"""


def list_items_script(search: str | None = None) -> str:
    return f"""
$searchTerm = {ps_quote(search or "")}
$items = @{{}}
foreach ($backup in Get-VBRBackup) {{
    $latest = Get-VBRRestorePoint -Backup $backup |
        Group-Object Name |
        ForEach-Object {{ $_.Group | Sort-Object CreationTime -Descending | Select-Object -First 1 }}
    foreach ($point in $latest) {{
        if ($point.Name -and (-not $searchTerm -or $point.Name -like "*$searchTerm*")) {{
            $key = $point.ObjectId.ToString()
            if (-not $items.ContainsKey($key)) {{
                $items[$key] = @{{
                    id = $key
                    name = $point.Name
                    platform = [string]$point.Platform
                    jobName = $backup.Name
                    lastBackup = $point.CreationTime.ToString('o')
                }}
            }}
        }}
    }}
}}
{_emit("@{ success = $true; data = @($items.Values) }")}
"""


def list_restore_points_script(item_name: str) -> str:
    return f"""
$points = @()
foreach ($backup in Get-VBRBackup) {{
    foreach ($point in (Get-VBRRestorePoint -Backup $backup | Where-Object {{ $_.Name -eq {ps_quote(item_name)} }})) {{
        $disks = @($point.AuxData.Disks | Where-Object {{ $_.ExistsInBackup }})
        $points += @{{
            id = $point.Id.ToString()
            creationTime = $point.CreationTime.ToString('o')
            jobName = $backup.Name
            incremental = [bool]$point.IsIncremental
            diskCount = $disks.Count
        }}
    }}
}}
{_emit("@{ success = $true; data = @($points | Sort-Object { $_.creationTime } -Descending) }")}
"""


def list_disks_script(restore_point_id: str) -> str:
    return f"""
$restorePoint = Get-VBRRestorePoint -Id {ps_quote(restore_point_id)}
if (-not $restorePoint) {{ throw ("Restore point not found: " + {ps_quote(restore_point_id)}) }}
$disks = @()
foreach ($disk in ($restorePoint.AuxData.Disks | Where-Object {{ $_.ExistsInBackup }})) {{
    $disks += @{{
        name = $disk.FlatFileName -replace '-flat\\.vmdk$', '.vmdk'
        label = $disk.Label
        capacityGb = [math]::Round($disk.Capacity / 1GB, 2)
        isSystem = [bool]$disk.IsSystem
    }}
}}
{_emit("@{ success = $true; data = $disks }")}
"""
