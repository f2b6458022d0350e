"""
Browser tracking snippet.

The JavaScript mirrors site_analytics.tracker.Tracker: calls made before the
session bootstrap finishes are buffered with the time they were made and
replayed in order. Each delivery is started as soon as it is made, so a
request that never settles holds up nothing behind it. Scroll milestones fire
once each and the closing page view on unload goes out through
navigator.sendBeacon.
"""

import json

TRACKER_JS = """\
(function(){
  var w=window,d=document,n=navigator,l=location;
  var api=__API_ENDPOINT__,debug=__DEBUG__;
  var session=null,pending=[];
  var currentPage="",pageStart=0,maxScroll=0,seen={},scrollTimer;
  var MILESTONES=[25,50,75,90,100];

  function log(){if(debug&&w.console)console.log.apply(console,["[Analytics]"].concat([].slice.call(arguments)))}
  function now(){return new Date().toISOString()}

  function post(path,body){
    return fetch(api+path,{method:"POST",headers:{"Content-Type":"application/json"},body:JSON.stringify(body),keepalive:true})
      .then(function(r){if(!r.ok)log("Delivery failed",path,r.status)})
      .catch(function(e){log("Delivery failed",path,e)});
  }

  function ids(body){body.sessionId=session.sessionId;body.visitorId=session.visitorId;return body}

  function sendPageView(page,title,duration,scrollDepth,timestamp){
    post("/pageview",ids({page:page,title:title,referrer:d.referrer||undefined,duration:duration,scrollDepth:scrollDepth,timestamp:timestamp||now()}));
  }

  function closePage(){
    if(!currentPage||!pageStart)return;
    sendPageView(currentPage,d.title,Date.now()-pageStart,maxScroll);
  }

  function trackPageView(page,title,queuedAt){
    if(!session){pending.push(["pageview",[page,title,now()]]);return}
    closePage();
    currentPage=page||l.pathname;pageStart=Date.now();maxScroll=0;seen={};
    sendPageView(currentPage,title||d.title,undefined,undefined,queuedAt);
  }

  function trackEvent(type,category,action,label,value,metadata,queuedAt){
    if(!session){pending.push(["event",[type,category,action,label,value,metadata,now()]]);return}
    post("/event",ids({eventType:type,eventCategory:category,eventAction:action,eventLabel:label,eventValue:value,
      page:currentPage||l.pathname,metadata:metadata,timestamp:queuedAt||now()}));
  }

  function record(path,body){
    body.timestamp=body.timestamp||now();
    if(!session){pending.push(["record",[path,body]]);return}
    post(path,ids(body));
  }

  function drain(){
    while(pending.length){
      var item=pending.shift();
      if(item[0]==="pageview")trackPageView.apply(null,item[1]);
      else if(item[0]==="event")trackEvent.apply(null,item[1]);
      else record.apply(null,item[1]);
    }
  }

  function classify(el){
    var tag=(el.tagName||"").toLowerCase();
    if(tag==="a"){
      var href=el.getAttribute("href");
      return {category:"link",label:href||"",href:href,external:!!href&&href.indexOf("http")===0&&href.indexOf(l.hostname)<0};
    }
    if(tag==="button")return {category:"button",type:el.getAttribute("type")};
    var form=el.closest&&el.closest("form");
    if(form)return {category:"form-element",formId:form.id};
    return {category:"click"};
  }

  d.addEventListener("click",function(ev){
    var el=ev.target;if(!el||!el.tagName)return;
    var c=classify(el);
    var label=c.label||(el.textContent||"").trim()||el.getAttribute("aria-label")||"";
    var meta={tagName:el.tagName.toLowerCase(),className:el.className,id:el.id};
    if(c.category==="link"){meta.href=c.href;meta.external=c.external}
    if(c.category==="button")meta.type=c.type;
    if(c.category==="form-element")meta.formId=c.formId;
    trackEvent("interaction",c.category,"click",label,undefined,meta);
  },true);

  w.addEventListener("scroll",function(){
    clearTimeout(scrollTimer);
    scrollTimer=setTimeout(function(){
      var height=d.documentElement.scrollHeight-w.innerHeight;
      var pct=height>0?Math.min(100,Math.round(w.scrollY/height*100)):100;
      if(pct<=maxScroll)return;
      maxScroll=pct;
      MILESTONES.forEach(function(m){
        if(pct>=m&&!seen[m]){seen[m]=true;trackEvent("engagement","scroll","milestone",m+"%",m)}
      });
    },250);
  },{passive:true});

  d.addEventListener("submit",function(ev){
    var f=ev.target;
    trackEvent("interaction","form","submit",f.id||f.className||"unnamed-form",undefined,
      {formId:f.id,formClass:f.className,formMethod:f.method,formAction:f.action});
  },true);

  d.addEventListener("focus",function(ev){
    var el=ev.target,tag=el&&el.tagName;
    if(tag!=="INPUT"&&tag!=="TEXTAREA"&&tag!=="SELECT")return;
    var form=el.closest&&el.closest("form");
    trackEvent("interaction","form-field","focus",el.getAttribute("name")||el.id,undefined,
      {fieldType:el.getAttribute("type")||tag.toLowerCase(),formId:form&&form.id,fieldName:el.getAttribute("name")});
  },true);

  d.addEventListener("visibilitychange",function(){
    if(!session)return;
    if(d.hidden){closePage();trackEvent("engagement","page","hidden")}
    else{pageStart=Date.now();trackEvent("engagement","page","visible")}
  });

  w.addEventListener("beforeunload",function(){
    if(!session||!currentPage||!pageStart)return;
    n.sendBeacon(api+"/pageview",JSON.stringify(ids({page:currentPage,title:d.title,
      duration:Date.now()-pageStart,scrollDepth:maxScroll,timestamp:now()})));
  });

  var h=history,push=h.pushState,replace=h.replaceState;
  function navigated(){if(l.pathname!==currentPage)trackPageView()}
  h.pushState=function(){push.apply(h,arguments);navigated()};
  h.replaceState=function(){replace.apply(h,arguments);navigated()};
  w.addEventListener("popstate",navigated);

  var ready=null;
  function init(){
    if(ready)return ready;
    trackPageView();
    ready=fetch(api+"/session",{method:"POST",headers:{"Content-Type":"application/json"},body:JSON.stringify({
      screen:{width:w.screen.width,height:w.screen.height,colorDepth:w.screen.colorDepth},
      language:n.language,timezone:Intl.DateTimeFormat().resolvedOptions().timeZone,
      referrer:d.referrer,currentUrl:l.href
    })}).then(function(r){
      if(!r.ok)throw new Error("HTTP "+r.status);
      return r.json();
    }).then(function(data){
      session=data;log("Session initialized",data);drain();
    }).catch(function(e){
      if(w.console)console.error("[Analytics] Session bootstrap failed; tracking disabled",e);
    });
    return ready;
  }

  w.siteAnalytics={
    init:init,
    trackPageView:function(page,title){trackPageView(page,title)},
    trackEvent:function(t,c,a,lb,v,m){trackEvent(t,c,a,lb,v,m)},
    trackDownload:function(file,url){trackEvent("interaction","download","click",file,undefined,{url:url})},
    trackOutboundLink:function(url,label){trackEvent("interaction","outbound-link","click",label||url,undefined,{url:url})},
    trackSearch:function(q,results){trackEvent("interaction","search","query",q,results)},
    trackVideoPlay:function(title,dur){trackEvent("media","video","play",title,dur)},
    trackVideoComplete:function(title,dur){trackEvent("media","video","complete",title,dur)},
    trackError:function(msg,type){trackEvent("error",type||"javascript","error",msg)},
    trackTiming:function(cat,variable,time,label){trackEvent("timing",cat,variable,label,time)},
    trackFormSubmission:function(body){record("/form",body)},
    reportError:function(body){record("/error",body)},
    trackPerformance:function(body){record("/performance",body)},
    session:function(){return session}
  };

  if(d.readyState==="loading")d.addEventListener("DOMContentLoaded",init);else init();
})();
"""


def render_tracker_js(api_endpoint: str = "/api/analytics", debug: bool = False) -> str:
    """Return the tracker source bound to an API endpoint."""
    return (
        TRACKER_JS
        .replace("__API_ENDPOINT__", json.dumps(api_endpoint.rstrip("/")))
        .replace("__DEBUG__", "true" if debug else "false")
    )


def tracking_script(api_endpoint: str = "/api/analytics", debug: bool = False) -> str:
    """Generate the inline <script> tag for templates."""
    return f"<script>\n{render_tracker_js(api_endpoint, debug)}</script>"
